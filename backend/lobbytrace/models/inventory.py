from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)

ITEM_ACTIVE = "ACTIVE"
ITEM_ARCHIVED = "ARCHIVED"


class InventoryItem(db.Model):
    """
    A stocked physical good (a case of milk, a bag of beans).

    Stock is counted in physical units; recipes consume recipe units and
    unitsPerPhysicalItem converts between them.

    INVARIANT: current_physical_stock >= 0. Only ledger_service.apply_movement
    changes it; every change leaves exactly one StockMovement behind.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.Index("ix_inventory_items_status_name", "status", "name"),
        db.CheckConstraint("current_physical_stock >= 0", name="ck_inventory_items_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False, default="Other")
    supplier = db.Column(db.String(255), nullable=True)
    vendor_product_id = db.Column(db.String(64), nullable=True)

    # Physical unit tracking (what staff count during an audit)
    physical_unit = db.Column(db.String(32), nullable=False, default="case")
    current_physical_stock = db.Column(db.Float, nullable=False, default=0.0)
    min_physical_stock_level = db.Column(db.Float, nullable=False, default=0.0)
    max_physical_stock_level = db.Column(db.Float, nullable=True)

    # Recipe unit tracking (what ingredients are measured in)
    recipe_unit = db.Column(db.String(32), nullable=False, default="each")
    units_per_physical_item = db.Column(db.Float, nullable=False, default=1.0)

    cost_per_physical_unit = db.Column(db.Float, nullable=False, default=0.0)
    cost_per_recipe_unit = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(16), nullable=False, default=ITEM_ACTIVE, index=True)

    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ITEM_ACTIVE

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} stock={self.current_physical_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "supplier": self.supplier,
            "vendor_product_id": self.vendor_product_id,
            "physical_unit": self.physical_unit,
            "current_physical_stock": self.current_physical_stock,
            "min_physical_stock_level": self.min_physical_stock_level,
            "max_physical_stock_level": self.max_physical_stock_level,
            "recipe_unit": self.recipe_unit,
            "units_per_physical_item": self.units_per_physical_item,
            "cost_per_physical_unit": self.cost_per_physical_unit,
            "cost_per_recipe_unit": self.cost_per_recipe_unit,
            "status": self.status,
            "last_restocked_at": to_utc_z(self.last_restocked_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable audit record of one ledger mutation.

    quantity is the magnitude actually applied (|new_stock - previous_stock|),
    so a clamped OUT records what really left the shelf, not what was asked for.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_created", "inventory_item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    # Denormalized so the audit trail reads without a join
    inventory_item_name = db.Column(db.String(255), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Float, nullable=False)
    previous_stock = db.Column(db.Float, nullable=False)
    new_stock = db.Column(db.Float, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    actor_type = db.Column(db.String(16), nullable=False, index=True)
    actor_id = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory_item = db.relationship("InventoryItem", backref=db.backref("movements", lazy="dynamic"))

    @property
    def delta(self) -> float:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "inventory_item_name": self.inventory_item_name,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "delta": self.delta,
            "reason": self.reason,
            "notes": self.notes,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError("stock movements are append-only")
