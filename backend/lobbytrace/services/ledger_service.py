# Overview: Stock ledger; the only code path that changes on-hand stock.

from __future__ import annotations

import math

from sqlalchemy import func

from ..actors import Actor
from ..extensions import db
from ..models import InventoryItem, StockMovement
from ..models.inventory import (
    ITEM_ACTIVE,
    ITEM_ARCHIVED,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
)
from ..time_utils import utcnow
from .concurrency import locked_item, run_stock_write
"""
Stock Ledger Invariants (authoritative)

- current_physical_stock >= 0 after every apply. OUT clamps at zero instead of
  failing; callers that need exact depletion must read the movement's delta,
  not the quantity they asked for.
- ADJUSTMENT sets an absolute count and needs a reason.
- One apply == one StockMovement. Movements are append-only.
- Write order: the item row is updated and flushed first, then the movement
  is added from the values actually written. Both land in one commit.
- Concurrent applies against one item are serialized by SELECT ... FOR UPDATE
  where the database honours it (not SQLite).
"""

STOCK_PRECISION = 6

ITEM_MUTABLE_FIELDS = {
    "name", "description", "category", "supplier", "vendor_product_id",
    "physical_unit", "min_physical_stock_level", "max_physical_stock_level",
    "recipe_unit", "units_per_physical_item",
    "cost_per_physical_unit", "cost_per_recipe_unit",
}


class LedgerError(ValueError):
    """Raised when a ledger request is malformed."""


class InventoryItemNotFound(LedgerError):
    """Raised when an inventory item id does not resolve."""


def _round_qty(value: float) -> float:
    return round(float(value), STOCK_PRECISION)


def compute_new_stock(previous_stock: float, quantity: float, movement_type: str) -> float:
    """Pure stock arithmetic, clamped at zero."""
    if movement_type == MOVEMENT_IN:
        new_stock = previous_stock + quantity
    elif movement_type == MOVEMENT_OUT:
        new_stock = previous_stock - quantity
    elif movement_type == MOVEMENT_ADJUSTMENT:
        new_stock = quantity
    else:
        raise LedgerError(f"invalid movement type: {movement_type}")
    return _round_qty(max(0.0, new_stock))


def _validate_request(quantity, movement_type: str, reason: str | None) -> float:
    if movement_type not in MOVEMENT_TYPES:
        raise LedgerError(f"invalid movement type: {movement_type}")
    try:
        qty = float(quantity)
    except (TypeError, ValueError):
        raise LedgerError("quantity must be a number")
    if math.isnan(qty) or math.isinf(qty):
        raise LedgerError("quantity must be finite")
    if qty < 0:
        raise LedgerError("quantity must be >= 0")
    if not reason or not str(reason).strip():
        raise LedgerError("reason is required")
    return qty


def _apply_to_item(
    item: InventoryItem,
    quantity: float,
    movement_type: str,
    reason: str,
    notes: str | None,
    actor: Actor,
) -> StockMovement:
    previous_stock = _round_qty(item.current_physical_stock or 0.0)
    new_stock = compute_new_stock(previous_stock, quantity, movement_type)

    item.current_physical_stock = new_stock
    if movement_type == MOVEMENT_IN:
        item.last_restocked_at = utcnow()
    db.session.flush()

    # Read back what was written, never what was intended
    written = item.current_physical_stock
    movement = StockMovement(
        inventory_item_id=item.id,
        inventory_item_name=item.name,
        type=movement_type,
        quantity=_round_qty(abs(written - previous_stock)),
        previous_stock=previous_stock,
        new_stock=written,
        reason=str(reason).strip(),
        notes=notes,
        actor_type=actor.kind,
        actor_id=actor.ident,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_movement(
    item_id: int,
    quantity,
    movement_type: str,
    reason: str,
    notes: str | None = None,
    *,
    actor: Actor,
    commit: bool = True,
) -> StockMovement:
    """
    Apply one stock change and record it.

    - IN: stock += quantity
    - OUT: stock = max(0, stock - quantity)
    - ADJUSTMENT: stock = quantity

    commit=False leaves the writes in the caller's transaction (used by the
    webhook path so movements and the dedup row commit together). Retry on
    lock/stale errors only happens when this call owns the commit.
    """
    qty = _validate_request(quantity, movement_type, reason)

    def _op():
        item = locked_item(item_id)
        if item is None:
            raise InventoryItemNotFound(f"Inventory item {item_id} not found")
        movement = _apply_to_item(item, qty, movement_type, reason, notes, actor)
        if commit:
            db.session.commit()
        return movement

    return run_stock_write(_op, owns_commit=commit)


def create_inventory_item(*, patch: dict, actor: Actor, initial_stock=0.0) -> InventoryItem:
    """
    Create an item at zero stock, then bring it to initial_stock through an
    IN movement so the ledger has an opening entry.
    """
    opening = _validate_request(initial_stock, MOVEMENT_IN, "Initial stock")

    item = InventoryItem(status=ITEM_ACTIVE, created_by=str(actor))
    for k, v in patch.items():
        if k in ITEM_MUTABLE_FIELDS:
            setattr(item, k, v)
    if not item.name:
        raise LedgerError("name is required")

    units = item.units_per_physical_item or 1.0
    if units <= 0:
        raise LedgerError("units_per_physical_item must be > 0")
    if "cost_per_recipe_unit" not in patch and item.cost_per_physical_unit:
        item.cost_per_recipe_unit = round(item.cost_per_physical_unit / units, 4)

    item.current_physical_stock = 0.0
    db.session.add(item)
    db.session.flush()

    _apply_to_item(item, opening, MOVEMENT_IN, "Initial stock", "Item created with initial stock", actor)
    db.session.commit()
    return item


def get_inventory_item(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise InventoryItemNotFound(f"Inventory item {item_id} not found")
    return item


def list_inventory_items(*, category: str | None = None, include_archived: bool = False) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if not include_archived:
        q = q.filter(InventoryItem.status == ITEM_ACTIVE)
    if category:
        q = q.filter(InventoryItem.category == category)
    return q.order_by(InventoryItem.name.asc(), InventoryItem.id.asc()).all()


def update_inventory_item(item_id: int, patch: dict) -> InventoryItem:
    """Update descriptive fields. Stock only moves through apply_movement."""
    if "current_physical_stock" in patch:
        raise LedgerError("current_physical_stock can only change through a stock movement")
    item = get_inventory_item(item_id)
    for k, v in patch.items():
        if k in ITEM_MUTABLE_FIELDS:
            setattr(item, k, v)
    if item.units_per_physical_item is not None and item.units_per_physical_item <= 0:
        db.session.rollback()
        raise LedgerError("units_per_physical_item must be > 0")
    db.session.commit()
    return item


def archive_inventory_item(item_id: int) -> InventoryItem:
    item = get_inventory_item(item_id)
    item.status = ITEM_ARCHIVED
    db.session.commit()
    return item


def list_stock_movements(item_id: int, limit: int | None = None) -> list[StockMovement]:
    get_inventory_item(item_id)
    q = (
        db.session.query(StockMovement)
        .filter(StockMovement.inventory_item_id == item_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def get_low_stock_items() -> list[InventoryItem]:
    return (
        db.session.query(InventoryItem)
        .filter(
            InventoryItem.status == ITEM_ACTIVE,
            InventoryItem.current_physical_stock <= InventoryItem.min_physical_stock_level,
        )
        .order_by(InventoryItem.name.asc())
        .all()
    )


def recipe_units_available(item: InventoryItem) -> float:
    return _round_qty((item.current_physical_stock or 0.0) * (item.units_per_physical_item or 1.0))


def get_inventory_value() -> float:
    total = (
        db.session.query(
            func.coalesce(
                func.sum(InventoryItem.current_physical_stock * InventoryItem.cost_per_physical_unit),
                0.0,
            )
        )
        .filter(InventoryItem.status == ITEM_ACTIVE)
        .scalar()
    )
    return round(float(total or 0.0), 2)
