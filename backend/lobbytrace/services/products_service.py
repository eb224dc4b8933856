# backend/lobbytrace/services/products_service.py
"""
Products Service

Square-linked products (token set) have their catalog fields owned by Square:
the catalog importer refreshes them and user patches may only touch the
locally owned fields (ingredients, preparation details, allergens).
"""
from __future__ import annotations

import math

from ..actors import Actor
from ..extensions import db
from ..models import InventoryItem, Product, ProductIngredient
from ..models.products import PRODUCT_ACTIVE, PRODUCT_ARCHIVED

LOCAL_FIELDS = {"preparation_time_minutes", "preparation_instructions", "allergens"}
PRODUCT_MUTABLE_FIELDS = set(Product.EXTERNAL_FIELDS) | LOCAL_FIELDS | {"token"}


class ProductError(ValueError):
    """Raised for product operation errors."""


class ProductNotFound(ProductError):
    pass


class ReadOnlyFieldError(ProductError):
    """Raised when a patch touches Square-owned fields of a linked product."""


def get_product(product_id: int, *, include_archived: bool = True) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (not include_archived and product.status != PRODUCT_ACTIVE):
        raise ProductNotFound(f"Product {product_id} not found")
    return product


def get_product_by_token(token: str) -> Product | None:
    if not token:
        return None
    return db.session.query(Product).filter_by(token=token).first()


def list_products(*, category: str | None = None, include_archived: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_archived:
        q = q.filter(Product.status == PRODUCT_ACTIVE)
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def _build_ingredients(rows: list[dict]) -> list[ProductIngredient]:
    """Validate ingredient rows and resolve their inventory items."""
    if not isinstance(rows, list):
        raise ProductError("ingredients must be a list")
    built = []
    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ProductError(f"ingredient {position + 1} must be an object")
        item_id = row.get("inventory_item_id")
        item = db.session.get(InventoryItem, item_id) if item_id is not None else None
        if item is None:
            raise ProductError(f"ingredient {position + 1}: inventory item {item_id} not found")
        try:
            quantity = float(row.get("quantity"))
        except (TypeError, ValueError):
            raise ProductError(f"ingredient {position + 1}: quantity must be a number")
        if not math.isfinite(quantity):
            raise ProductError(f"ingredient {position + 1}: quantity must be finite")
        if quantity < 0:
            raise ProductError(f"ingredient {position + 1}: quantity must be >= 0")
        built.append(
            ProductIngredient(
                inventory_item_id=item.id,
                inventory_item_name=item.name,
                position=position,
                quantity=quantity,
                unit=(row.get("unit") or item.recipe_unit),
                notes=row.get("notes"),
            )
        )
    return built


def create_product(*, patch: dict, actor: Actor, ingredients: list[dict] | None = None) -> Product:
    product = Product(status=PRODUCT_ACTIVE, created_by=str(actor), allergens=[])
    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)
    if not product.name:
        raise ProductError("name is required")
    product.ingredients = _build_ingredients(ingredients or [])
    db.session.add(product)
    db.session.commit()
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """
    Patch a product.

    For Square-linked products any key in Product.EXTERNAL_FIELDS (or token)
    is rejected; nothing is written when that happens.
    """
    product = get_product(product_id)
    if product.is_square_linked:
        blocked = sorted(k for k in patch if k in Product.EXTERNAL_FIELDS or k == "token")
        if blocked:
            raise ReadOnlyFieldError(
                f"Fields managed by Square cannot be edited: {', '.join(blocked)}"
            )
    new_ingredients = _build_ingredients(patch["ingredients"]) if "ingredients" in patch else None
    for k, v in patch.items():
        if k in PRODUCT_MUTABLE_FIELDS:
            setattr(product, k, v)
    if new_ingredients is not None:
        product.ingredients = new_ingredients
    db.session.commit()
    return product


def set_ingredients(product_id: int, ingredients: list[dict]) -> Product:
    product = get_product(product_id)
    product.ingredients = _build_ingredients(ingredients)
    db.session.commit()
    return product


def archive_product(product_id: int) -> Product:
    product = get_product(product_id)
    product.status = PRODUCT_ARCHIVED
    db.session.commit()
    return product
