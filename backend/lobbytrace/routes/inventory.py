# backend/lobbytrace/routes/inventory.py
"""
Inventory item and stock ledger routes.

SECURITY: All routes require a bearer token; the resolved user is recorded as
the actor on every write.

Stock never changes through PUT: the only way to move current_physical_stock
is POST /<id>/movements, which goes through the ledger.
"""
from flask import Blueprint, current_app, g, request

from ..models import InventoryItem
from ..services.ledger_service import (
    InventoryItemNotFound,
    LedgerError,
    apply_movement,
    archive_inventory_item,
    create_inventory_item,
    get_inventory_item,
    get_inventory_value,
    get_low_stock_items,
    list_inventory_items,
    list_stock_movements,
    recipe_units_available,
    update_inventory_item,
)
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_inventory_item,
    validate_payload,
)
from ..decorators import require_auth

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

_ITEM_FIELDS = {
    "name", "description", "category", "supplier", "vendor_product_id",
    "physical_unit", "min_physical_stock_level", "max_physical_stock_level",
    "recipe_unit", "units_per_physical_item",
    "cost_per_physical_unit", "cost_per_recipe_unit",
}

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_ITEM_FIELDS,
    required_on_create={"name"},
    extra_fields={"initial_stock"},
)

ITEM_UPDATE_POLICY = ModelValidationPolicy(writable_fields=_ITEM_FIELDS)


def _item_payload(item: InventoryItem) -> dict:
    data = item.to_dict()
    data["recipe_units_available"] = recipe_units_available(item)
    return data


@inventory_bp.get("")
@require_auth
def list_items_route():
    """
    Query params:
    - category: str (optional)
    - include_archived: bool (optional, default false)
    """
    category = request.args.get("category") or None
    include_archived = request.args.get("include_archived", "false").lower() in {"1", "true", "yes"}
    items = list_inventory_items(category=category, include_archived=include_archived)
    return {"items": [_item_payload(i) for i in items]}, 200


@inventory_bp.post("")
@require_auth
def create_item_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=payload,
            policy=ITEM_CREATE_POLICY,
            partial=False,
        )
        enforce_rules_inventory_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    initial_stock = patch.pop("initial_stock", 0.0) or 0.0
    try:
        item = create_inventory_item(patch=patch, actor=g.actor, initial_stock=initial_stock)
    except LedgerError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create inventory item")
        return {"error": "Internal server error"}, 500

    return {"item": _item_payload(item)}, 201


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    items = get_low_stock_items()
    return {"items": [_item_payload(i) for i in items], "count": len(items)}, 200


@inventory_bp.get("/value")
@require_auth
def inventory_value_route():
    return {"total_value": get_inventory_value()}, 200


@inventory_bp.get("/<int:item_id>")
@require_auth
def get_item_route(item_id: int):
    try:
        item = get_inventory_item(item_id)
    except InventoryItemNotFound:
        return {"error": "Inventory item not found"}, 404
    return {"item": _item_payload(item)}, 200


@inventory_bp.put("/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}
    if "current_physical_stock" in payload:
        return {"error": "current_physical_stock can only change through a stock movement"}, 400

    try:
        patch = validate_payload(
            model=InventoryItem,
            payload=payload,
            policy=ITEM_UPDATE_POLICY,
            partial=True,
        )
        enforce_rules_inventory_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        item = update_inventory_item(item_id, patch)
    except InventoryItemNotFound:
        return {"error": "Inventory item not found"}, 404
    except LedgerError as e:
        return {"error": str(e)}, 400

    return {"item": _item_payload(item)}, 200


@inventory_bp.post("/<int:item_id>/archive")
@require_auth
def archive_item_route(item_id: int):
    try:
        item = archive_inventory_item(item_id)
    except InventoryItemNotFound:
        return {"error": "Inventory item not found"}, 404
    return {"item": _item_payload(item)}, 200


@inventory_bp.post("/<int:item_id>/movements")
@require_auth
def apply_movement_route(item_id: int):
    """
    Apply one stock movement.

    Body: {"type": "IN"|"OUT"|"ADJUSTMENT", "quantity": number, "reason": str, "notes": str?}

    OUT is clamped at zero; the response movement carries the quantity that
    was actually removed.
    """
    payload = request.get_json(silent=True) or {}
    missing = sorted(k for k in ("type", "quantity", "reason") if k not in payload)
    if missing:
        return {"error": f"Missing required fields: {', '.join(missing)}"}, 400

    try:
        movement = apply_movement(
            item_id,
            payload.get("quantity"),
            str(payload.get("type")).upper(),
            payload.get("reason"),
            payload.get("notes"),
            actor=g.actor,
        )
    except InventoryItemNotFound:
        return {"error": "Inventory item not found"}, 404
    except LedgerError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to apply stock movement to item %s", item_id)
        return {"error": "Internal server error"}, 500

    item = get_inventory_item(item_id)
    return {"movement": movement.to_dict(), "item": _item_payload(item)}, 201


@inventory_bp.get("/<int:item_id>/movements")
@require_auth
def list_movements_route(item_id: int):
    limit = request.args.get("limit", type=int)
    try:
        movements = list_stock_movements(item_id, limit=limit)
    except InventoryItemNotFound:
        return {"error": "Inventory item not found"}, 404
    return {"movements": [m.to_dict() for m in movements]}, 200
