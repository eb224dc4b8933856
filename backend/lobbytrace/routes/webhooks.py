# backend/lobbytrace/routes/webhooks.py
"""
Square webhook endpoint.

Authenticated by HMAC signature only, never by bearer token. The signature is
read from x-square-signature; Square's own x-square-hmacsha256-signature is
accepted when the first is absent. Square and browser-based test tools call it
cross-origin, so every response carries open CORS headers.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..services.webhook_service import handle_webhook

webhooks_bp = Blueprint("webhooks", __name__)

SIGNATURE_HEADER = "x-square-signature"
SQUARE_SIGNATURE_HEADER = "x-square-hmacsha256-signature"

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, {SIGNATURE_HEADER}, {SQUARE_SIGNATURE_HEADER}",
}


def _request_signature() -> str | None:
    return request.headers.get(SIGNATURE_HEADER) or request.headers.get(SQUARE_SIGNATURE_HEADER)


@webhooks_bp.after_request
def add_webhook_cors_headers(response):
    response.headers.update(_CORS_HEADERS)
    return response


@webhooks_bp.route("/squareWebhook", methods=["GET", "PUT", "PATCH", "DELETE", "POST", "OPTIONS"])
def square_webhook():
    if request.method == "OPTIONS":
        return "", 204
    if request.method != "POST":
        return {"error": "Method not allowed"}, 405

    try:
        outcome = handle_webhook(request.get_data(), _request_signature())
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to handle Square webhook")
        return {"error": "Internal server error"}, 500

    return outcome.body, outcome.status_code
