# backend/lobbytrace/routes/system.py
"""
System health endpoint.

Checks the database and reports whether Square is configured, so a deploy
can be smoke-tested without credentials.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import InventoryItem, Product, ProductMapping, WebhookLog
from ..services.square_config_service import get_square_config
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "inventory_items": db.session.query(InventoryItem).count(),
            "products": db.session.query(Product).count(),
            "mappings": db.session.query(ProductMapping).count(),
            "webhook_logs": db.session.query(WebhookLog).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_square_config_health() -> dict:
    try:
        config = get_square_config()
    except Exception:
        current_app.logger.exception("Square config health check failed")
        return {"status": "unhealthy", "error": "Square config unreadable"}

    if not config.access_token:
        return {"status": "degraded", "warning": "Square is not configured"}
    return {
        "status": "healthy",
        "details": {
            "environment": config.environment,
            "signature_key_configured": bool(config.webhook_signature_key),
            "last_sync_at": to_utc_z(config.last_sync_at),
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (Square unconfigured is still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    square_health = (
        check_square_config_health()
        if database_health["status"] == "healthy"
        else {"status": "unknown"}
    )

    all_checks = [database_health, square_health]
    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] != "healthy" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "square": square_health,
        },
    }, http_status
