from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PRODUCT_ACTIVE = "ACTIVE"
PRODUCT_ARCHIVED = "ARCHIVED"


class Product(db.Model):
    """
    A sellable catalog entry (a drink, a pastry).

    SQUARE LINKAGE:
    token holds the Square ITEM_VARIATION id once the product has been
    imported from (or linked to) the Square catalog. For linked products the
    externally owned fields (see EXTERNAL_FIELDS) are refreshed by the
    catalog importer and are read-only to users; ingredients, preparation
    details and allergens stay locally owned.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("token", name="uq_products_token"),
        db.Index("ix_products_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    EXTERNAL_FIELDS = frozenset({
        "name", "variation", "sku", "description", "category", "price_cents",
        "size", "temperature", "to_go_status", "square_item_id",
    })

    id = db.Column(db.Integer, primary_key=True)

    token = db.Column(db.String(64), nullable=True)
    square_item_id = db.Column(db.String(64), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    variation = db.Column(db.String(255), nullable=True)
    sku = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(128), nullable=False, default="Drinks")

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=True)

    size = db.Column(db.String(16), nullable=True)
    temperature = db.Column(db.String(16), nullable=True)
    to_go_status = db.Column(db.String(16), nullable=True)

    preparation_time_minutes = db.Column(db.Integer, nullable=True)
    preparation_instructions = db.Column(db.Text, nullable=True)
    allergens = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_ACTIVE, index=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    ingredients = db.relationship(
        "ProductIngredient",
        order_by="ProductIngredient.position",
        cascade="all, delete-orphan",
        backref="product",
        lazy="selectin",
    )

    @property
    def is_square_linked(self) -> bool:
        return bool(self.token)

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_ACTIVE

    @property
    def full_name(self) -> str:
        if self.variation:
            return f"{self.name} {self.variation}"
        return self.name

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} token={self.token!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "token": self.token,
            "square_item_id": self.square_item_id,
            "name": self.name,
            "variation": self.variation,
            "sku": self.sku,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "size": self.size,
            "temperature": self.temperature,
            "to_go_status": self.to_go_status,
            "preparation_time_minutes": self.preparation_time_minutes,
            "preparation_instructions": self.preparation_instructions,
            "allergens": list(self.allergens or []),
            "status": self.status,
            "is_square_linked": self.is_square_linked,
            "ingredients": [i.to_dict() for i in self.ingredients],
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductIngredient(db.Model):
    __tablename__ = "product_ingredients"
    __table_args__ = (
        db.Index("ix_product_ingredients_product_position", "product_id", "position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    inventory_item_name = db.Column(db.String(255), nullable=False)

    position = db.Column(db.Integer, nullable=False, default=0)
    # Recipe units consumed per unit sold
    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "inventory_item_id": self.inventory_item_id,
            "inventory_item_name": self.inventory_item_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "notes": self.notes,
        }
