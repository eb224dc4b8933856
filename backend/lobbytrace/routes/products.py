# backend/lobbytrace/routes/products.py
"""
Product (recipe) routes.

Square-linked products keep their catalog fields under Square's control:
PUT may only change preparation details, allergens and ingredients for
them. Catalog fields are refreshed by the catalog import.
"""
from flask import Blueprint, current_app, g, request

from ..models import Product
from ..services.products_service import (
    ProductError,
    ProductNotFound,
    ReadOnlyFieldError,
    archive_product,
    create_product,
    get_product,
    list_products,
    set_ingredients,
    update_product,
)
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from ..decorators import require_auth

_PRODUCT_FIELDS = set(Product.EXTERNAL_FIELDS) | {
    "token", "preparation_time_minutes", "preparation_instructions", "allergens",
}

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS,
    required_on_create={"name"},
    extra_fields={"ingredients"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS,
    extra_fields={"ingredients"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products_route():
    """
    Query params:
    - category: str (optional)
    - include_archived: bool (optional, default false)
    """
    category = request.args.get("category") or None
    include_archived = request.args.get("include_archived", "false").lower() in {"1", "true", "yes"}
    products = list_products(category=category, include_archived=include_archived)
    return {"products": [p.to_dict() for p in products]}, 200


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    ingredients = patch.pop("ingredients", None)
    try:
        product = create_product(patch=patch, actor=g.actor, ingredients=ingredients)
    except ProductError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        product = get_product(product_id)
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    return {"product": product.to_dict()}, 200


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Product,
            payload=payload,
            policy=PRODUCT_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product = update_product(product_id, patch)
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    except ReadOnlyFieldError as e:
        return {"error": str(e)}, 409
    except ProductError as e:
        return {"error": str(e)}, 400

    return {"product": product.to_dict()}, 200


@products_bp.put("/<int:product_id>/ingredients")
@require_auth
def set_ingredients_route(product_id: int):
    """Body: {"ingredients": [{"inventory_item_id", "quantity", "unit"?, "notes"?}, ...]}"""
    payload = request.get_json(silent=True) or {}
    if "ingredients" not in payload:
        return {"error": "Missing required fields: ingredients"}, 400

    try:
        product = set_ingredients(product_id, payload["ingredients"])
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    except ProductError as e:
        return {"error": str(e)}, 400

    return {"product": product.to_dict()}, 200


@products_bp.post("/<int:product_id>/archive")
@require_auth
def archive_product_route(product_id: int):
    try:
        product = archive_product(product_id)
    except ProductNotFound:
        return {"error": "Product not found"}, 404
    return {"product": product.to_dict()}, 200
