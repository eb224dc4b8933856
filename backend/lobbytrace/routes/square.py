# backend/lobbytrace/routes/square.py
"""
Square integration routes: connection settings, catalog import, product
mappings, manual sale sync, webhook log review, and the Square webhook
subscription with its test-event simulator.

SECURITY: All routes require a bearer token. Secrets in the stored config are
masked on every read.

Square API failures surface as 502 with Square's error details; nothing is
retried here.
"""
from flask import Blueprint, current_app, g, request

from ..actors import SOURCE_MANUAL_SYNC
from ..extensions import db
from ..services.catalog_import_service import import_catalog_from_square
from ..services.consumption_service import ConsumptionError, consume_order
from ..services.mapping_service import (
    MappingError,
    MappingNotFound,
    get_mapping,
    list_mappings,
    save_mapping,
    set_enabled,
    suggest_unmapped,
)
from ..services.products_service import list_products
from ..services.square_client import SquareAPIError
from ..services.square_config_service import (
    SquareConfigError,
    client_from_config,
    get_square_config,
    save_square_config,
)
from ..services.webhook_service import (
    WebhookError,
    WebhookLogNotFound,
    get_webhook_stats,
    list_webhook_logs,
    register_webhook_subscription,
    remove_webhook_subscription,
    replay_webhook_log,
    simulate_webhook_event,
)
from ..decorators import require_auth

square_bp = Blueprint("square", __name__, url_prefix="/api/square")


def _square_error(e: SquareAPIError):
    current_app.logger.warning("Square API call failed: %s", e)
    return {"error": str(e), "details": e.details}, 502


# CONFIG

@square_bp.get("/config")
@require_auth
def get_config_route():
    return {"config": get_square_config().to_dict()}, 200


@square_bp.put("/config")
@require_auth
def save_config_route():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    try:
        config = save_square_config(payload, actor=g.actor)
    except SquareConfigError as e:
        return {"error": str(e), "errors": e.errors}, 400

    return {"config": config.to_dict()}, 200


@square_bp.post("/config/test")
@require_auth
def test_config_route():
    """Check the stored credentials by listing locations."""
    try:
        with client_from_config() as client:
            locations = client.list_locations()
    except SquareAPIError as e:
        return {"ok": False, "error": str(e)}, 200
    return {"ok": True, "locations": len(locations)}, 200


@square_bp.get("/locations")
@require_auth
def list_locations_route():
    try:
        with client_from_config() as client:
            locations = client.list_locations()
    except SquareAPIError as e:
        return _square_error(e)
    return {"locations": locations}, 200


@square_bp.get("/inventory-counts")
@require_auth
def inventory_counts_route():
    """
    Query params:
    - catalog_object_ids: comma-separated (optional)
    - location_id: defaults to the configured location
    """
    config = get_square_config()
    location_id = request.args.get("location_id") or config.location_id
    if not location_id:
        return {"error": "location_id is required"}, 400
    raw_ids = request.args.get("catalog_object_ids") or ""
    ids = [i.strip() for i in raw_ids.split(",") if i.strip()]

    try:
        with client_from_config(config) as client:
            counts = client.batch_retrieve_inventory_counts(ids or None, location_id)
    except SquareAPIError as e:
        return _square_error(e)
    return {"counts": counts}, 200


# CATALOG

@square_bp.post("/catalog/import")
@require_auth
def import_catalog_route():
    try:
        with client_from_config() as client:
            result = import_catalog_from_square(client, actor=g.actor)
    except SquareAPIError as e:
        return _square_error(e)
    return {"result": result.to_dict()}, 200


# MAPPINGS

@square_bp.get("/mappings")
@require_auth
def list_mappings_route():
    include_disabled = request.args.get("include_disabled", "false").lower() in {"1", "true", "yes"}
    mappings = list_mappings(include_disabled=include_disabled)
    return {"mappings": [m.to_dict() for m in mappings]}, 200


@square_bp.post("/mappings")
@require_auth
def save_mapping_route():
    """
    Body: {"product_id", "square_variation_id", "square_catalog_object_id"?,
           "square_item_name"?, "product_name"?}

    201 when a mapping was created, 200 when an existing one was re-enabled.
    """
    payload = request.get_json(silent=True) or {}
    product_id = payload.get("product_id")
    if not isinstance(product_id, int) or isinstance(product_id, bool):
        return {"error": "product_id must be an integer"}, 400

    try:
        mapping, created = save_mapping(
            product_id=product_id,
            square_variation_id=payload.get("square_variation_id"),
            square_catalog_object_id=payload.get("square_catalog_object_id"),
            square_item_name=payload.get("square_item_name"),
            product_name=payload.get("product_name"),
            actor=g.actor,
        )
    except MappingError as e:
        return {"error": str(e)}, 400

    return {"mapping": mapping.to_dict(), "created": created}, 201 if created else 200


@square_bp.post("/mappings/<int:mapping_id>/enable")
@require_auth
def enable_mapping_route(mapping_id: int):
    try:
        mapping = set_enabled(mapping_id, True)
    except MappingNotFound:
        return {"error": "Mapping not found"}, 404
    return {"mapping": mapping.to_dict()}, 200


@square_bp.post("/mappings/<int:mapping_id>/disable")
@require_auth
def disable_mapping_route(mapping_id: int):
    try:
        mapping = set_enabled(mapping_id, False)
    except MappingNotFound:
        return {"error": "Mapping not found"}, 404
    return {"mapping": mapping.to_dict()}, 200


@square_bp.get("/mappings/<int:mapping_id>")
@require_auth
def get_mapping_route(mapping_id: int):
    try:
        mapping = get_mapping(mapping_id)
    except MappingNotFound:
        return {"error": "Mapping not found"}, 404
    return {"mapping": mapping.to_dict()}, 200


@square_bp.get("/mappings/suggestions")
@require_auth
def mapping_suggestions_route():
    """Suggestions for products and variations that have no active mapping."""
    try:
        with client_from_config() as client:
            objects = client.search_catalog()
    except SquareAPIError as e:
        return _square_error(e)

    suggestions = suggest_unmapped(list_products(), objects)
    return {"suggestions": [s.to_dict() for s in suggestions]}, 200


# SALES

@square_bp.post("/sales")
@require_auth
def manual_sale_route():
    """
    Run one Square order through the consumption engine.

    Body: a Square order object ({"id", "line_items": [...]}) or {"order": {...}}.
    Manual syncs are not deduplicated; replaying the same order consumes again.
    """
    payload = request.get_json(silent=True) or {}
    order = payload.get("order", payload) if isinstance(payload, dict) else None

    try:
        result = consume_order(order, source=SOURCE_MANUAL_SYNC)
    except ConsumptionError as e:
        db.session.rollback()
        return {"error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to sync sale")
        return {"error": "Internal server error"}, 500

    return {"result": result.to_dict()}, 200


# WEBHOOK LOGS

@square_bp.get("/webhook-logs")
@require_auth
def list_webhook_logs_route():
    limit = request.args.get("limit", default=100, type=int)
    logs = list_webhook_logs(limit=limit)
    return {"logs": [log.to_dict() for log in logs]}, 200


@square_bp.get("/webhook-logs/stats")
@require_auth
def webhook_stats_route():
    return get_webhook_stats(), 200


@square_bp.post("/webhook-logs/<int:log_id>/replay")
@require_auth
def replay_webhook_log_route(log_id: int):
    try:
        log, result = replay_webhook_log(log_id, g.actor)
    except WebhookLogNotFound:
        return {"error": "Webhook log not found"}, 404
    except WebhookError as e:
        return {"error": str(e)}, 409
    except SquareAPIError as e:
        return _square_error(e)
    except ValueError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to replay webhook log %s", log_id)
        return {"error": "Internal server error"}, 500

    return {"log": log.to_dict(), "result": result.to_dict()}, 200


# WEBHOOK SUBSCRIPTION

@square_bp.post("/webhook-subscription")
@require_auth
def register_webhook_route():
    """Body (optional): {"notification_url": "https://.../squareWebhook"}"""
    payload = request.get_json(silent=True) or {}
    try:
        config = register_webhook_subscription(g.actor, payload.get("notification_url"))
    except WebhookError as e:
        return {"error": str(e)}, 409
    except SquareAPIError as e:
        return _square_error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to register Square webhook subscription")
        return {"error": "Internal server error"}, 500

    return {"config": config.to_dict()}, 201


@square_bp.delete("/webhook-subscription")
@require_auth
def remove_webhook_route():
    try:
        config = remove_webhook_subscription(g.actor)
    except WebhookError as e:
        return {"error": str(e)}, 409
    except SquareAPIError as e:
        return _square_error(e)

    return {"config": config.to_dict()}, 200


@square_bp.post("/webhook-simulate")
@require_auth
def simulate_webhook_route():
    """
    Run a test COMPLETED order through webhook intake.

    Body: {"id"?, "line_items": [{"catalog_object_id", "quantity"}, ...]} or
    {"order": {...}}. The response mirrors what /squareWebhook would answer.
    """
    payload = request.get_json(silent=True) or {}
    order = payload.get("order", payload) if isinstance(payload, dict) else None

    try:
        outcome = simulate_webhook_event(order)
    except WebhookError as e:
        return {"error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to simulate Square webhook")
        return {"error": "Internal server error"}, 500

    return outcome.body, outcome.status_code
