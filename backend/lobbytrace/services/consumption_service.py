# Overview: Turns one completed Square sale into ingredient-level stock decrements.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..actors import Actor
from ..extensions import db
from ..models import InventoryItem, Product
from ..models.inventory import MOVEMENT_OUT
from ..models.products import PRODUCT_ACTIVE
from ..time_utils import deadline_passed, to_utc_z, utcnow
from .ledger_service import LedgerError, apply_movement
from .mapping_service import find_active_mapping, touch_last_synced
from .square_config_service import mark_synced
"""
Sale Consumption (authoritative)

Per line, in order:
1. Active mapping for the line's catalog id? No -> skip, "unmapped", not an error.
2. Mapped product exists and is active? No -> line error, continue.
3. Every ingredient's inventory item exists? No -> line error, nothing written
   for that line.
4. consumed = ingredient.quantity * line.quantity, applied as an OUT movement
   with reason "sale consumption". The line's movements share a savepoint; a
   ledger error rolls back that line only and is recorded as a line error.
5. A product with no recipe writes nothing and does not count as updated.
After all lines every touched mapping gets last_synced_at.

A single line never aborts its siblings. success == (errors is empty), so a
sale with no mapped lines is a successful no-op.
"""

CONSUMPTION_REASON = "sale consumption"

STATE_RECEIVED = "RECEIVED"
STATE_CONSUMING = "CONSUMING"
STATE_COMPLETED = "COMPLETED"
STATE_COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"


class ConsumptionError(ValueError):
    """Raised when a sale cannot be read at all."""


class ConsumptionTimeout(ConsumptionError):
    """Raised when processing runs past its deadline."""


@dataclass(frozen=True)
class SaleLine:
    catalog_object_id: str | None
    quantity: Decimal
    name: str | None = None


@dataclass
class SyncResult:
    success: bool = True
    items_processed: int = 0
    items_updated: int = 0
    errors: list[str] = field(default_factory=list)
    unmapped: list[str] = field(default_factory=list)
    movement_ids: list[int] = field(default_factory=list)
    state: str = STATE_RECEIVED
    last_sync_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "items_processed": self.items_processed,
            "items_updated": self.items_updated,
            "errors": list(self.errors),
            "unmapped": list(self.unmapped),
            "movement_ids": list(self.movement_ids),
            "state": self.state,
            "last_sync_at": to_utc_z(self.last_sync_at),
        }


def _parse_quantity(raw) -> Decimal:
    try:
        qty = Decimal(str(raw).strip())
    except (InvalidOperation, AttributeError):
        raise ConsumptionError(f"invalid line quantity: {raw!r}")
    if not qty.is_finite() or qty < 0:
        raise ConsumptionError(f"invalid line quantity: {raw!r}")
    return qty


def sale_lines_from_order(order: dict) -> list[SaleLine]:
    """
    Read line items from a Square order object.

    Square sends quantities as decimal strings ("2", "0.5").
    """
    if not isinstance(order, dict):
        raise ConsumptionError("order must be an object")
    lines = []
    for raw in order.get("line_items") or []:
        if not isinstance(raw, dict):
            raise ConsumptionError("line item must be an object")
        lines.append(
            SaleLine(
                catalog_object_id=raw.get("catalog_object_id"),
                quantity=_parse_quantity(raw.get("quantity", "1")),
                name=raw.get("name"),
            )
        )
    return lines


def _format_qty(qty: Decimal) -> str:
    return format(qty.normalize(), "f") if qty == qty.to_integral() else str(qty)


def _consume_line(sale_id: str, line: SaleLine, actor: Actor, result: SyncResult, touched: set[int]) -> None:
    mapping = find_active_mapping(line.catalog_object_id)
    if mapping is None:
        label = line.catalog_object_id or line.name or "<no catalog id>"
        current_app.logger.info("Sale %s: unmapped line %s", sale_id, label)
        result.unmapped.append(label)
        return

    product = db.session.get(Product, mapping.product_id)
    if product is None or product.status != PRODUCT_ACTIVE:
        result.errors.append(
            f"Line {line.catalog_object_id}: product {mapping.product_id} for mapping {mapping.id} not found"
        )
        return

    missing = [
        ing.inventory_item_id for ing in product.ingredients
        if db.session.get(InventoryItem, ing.inventory_item_id) is None
    ]
    if missing:
        result.errors.append(
            f"Line {line.catalog_object_id}: {product.name} references missing inventory item(s) "
            f"{', '.join(str(i) for i in missing)}"
        )
        return

    if not product.ingredients:
        current_app.logger.info("Sale %s: %s has no recipe; nothing consumed", sale_id, product.name)
        return

    # One savepoint per line: a ledger failure on any ingredient undoes that
    # line's earlier movements and leaves sibling lines intact
    note = f"{sale_id}: {_format_qty(line.quantity)}x {product.name}"
    savepoint = db.session.begin_nested()
    line_movements = []
    try:
        for ing in product.ingredients:
            consumed = float(Decimal(str(ing.quantity)) * line.quantity)
            movement = apply_movement(
                ing.inventory_item_id,
                consumed,
                MOVEMENT_OUT,
                CONSUMPTION_REASON,
                note,
                actor=actor,
                commit=False,
            )
            line_movements.append(movement.id)
        savepoint.commit()
    except (LedgerError, InvalidOperation, OverflowError) as e:
        savepoint.rollback()
        current_app.logger.warning("Sale %s: line %s failed: %s", sale_id, line.catalog_object_id, e)
        result.errors.append(f"Line {line.catalog_object_id}: {product.name}: {e}")
        return

    result.movement_ids.extend(line_movements)
    touched.add(mapping.id)
    result.items_updated += 1


def consume_sale(
    sale_id: str,
    lines: list[SaleLine],
    *,
    source: str,
    commit: bool = True,
    deadline: float | None = None,
) -> SyncResult:
    """
    Apply a completed sale to the ledger.

    commit=False leaves every write in the caller's transaction. deadline is a
    time.monotonic() value checked between lines.
    """
    actor = Actor.system(source)
    result = SyncResult(state=STATE_RECEIVED)
    touched: set[int] = set()

    result.state = STATE_CONSUMING
    for line in lines:
        if deadline_passed(deadline):
            raise ConsumptionTimeout(f"Sale {sale_id}: processing budget exceeded")
        result.items_processed += 1
        _consume_line(sale_id, line, actor, result, touched)

    result.last_sync_at = utcnow()
    touch_last_synced(touched, result.last_sync_at, commit=False)
    if touched:
        mark_synced(result.last_sync_at)
    if commit:
        db.session.commit()

    result.success = not result.errors
    result.state = STATE_COMPLETED if result.success else STATE_COMPLETED_WITH_ERRORS
    current_app.logger.info(
        "Sale %s consumed: %d lines, %d updated, %d errors",
        sale_id, result.items_processed, result.items_updated, len(result.errors),
    )
    return result


def consume_order(order: dict, *, source: str) -> SyncResult:
    """Manual sync of one Square order object. Not deduplicated."""
    if not isinstance(order, dict):
        raise ConsumptionError("order must be an object")
    sale_id = order.get("id")
    if not sale_id:
        raise ConsumptionError("order id is required")
    return consume_sale(str(sale_id), sale_lines_from_order(order), source=source)
