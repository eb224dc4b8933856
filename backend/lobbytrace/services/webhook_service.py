# Overview: Square webhook intake: signature policy, event filtering, dedup and replay.

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..actors import SOURCE_MANUAL_SYNC, SOURCE_SQUARE_WEBHOOK, Actor
from ..extensions import db
from ..models import SquareConfig, WebhookLog
from ..models.square import (
    OUTCOME_FAILED,
    OUTCOME_IGNORED,
    OUTCOME_PROCESSED,
    OUTCOME_REJECTED,
)
from ..time_utils import deadline_after, to_utc_z, utcnow
from .consumption_service import ConsumptionTimeout, SyncResult, consume_sale, sale_lines_from_order
from .square_client import SquareAPIError
from .square_config_service import (
    client_from_config,
    get_square_config,
    resolve_notification_url,
    resolve_signature_key,
)
"""
Webhook Intake

Pipeline for one delivery:
1. Parse JSON. Unparseable -> 400, nothing logged.
2. Signature policy. Rejected -> 401, logged with outcome REJECTED (no dedup key).
3. Event type filter, then order state filter. Filtered -> 200, logged IGNORED.
4. Dedup on event id. Seen -> 200 "Already processed", nothing written.
5. Consume the sale and insert the log row in one transaction. Losing the
   dedup_key race rolls the movements back too.

Exactly one deduplicated log row exists per event id, whatever the outcome.
Failed deliveries are never retried automatically; replay_webhook_log
reprocesses them under a derived event id.

The Square subscription that feeds this endpoint is registered and removed
here too; registering stores the signature key Square issues for it.
"""

ORDER_EVENT_TYPES = ("order.created", "order.updated", "order.fulfillment.updated")
ORDER_STATE_COMPLETED = "COMPLETED"

# Square's notification payloads carry only an order stub under these keys
_ORDER_STUB_KEYS = ("order_created", "order_updated", "order_fulfillment_updated")

MAX_LOG_LIMIT = 500


class WebhookError(ValueError):
    """Raised for webhook processing errors."""


class WebhookSignatureError(WebhookError):
    """Raised when a delivery fails the signature policy."""


class WebhookTimeout(WebhookError):
    """Raised when a delivery runs past SQUARE_WEBHOOK_TIMEOUT_SECONDS."""


class WebhookLogNotFound(WebhookError):
    pass


@dataclass
class WebhookOutcome:
    status_code: int
    body: dict = field(default_factory=dict)
    log_id: int | None = None


def compute_signature(raw_body: bytes, key: str, notification_url: str = "") -> str:
    message = notification_url.encode("utf-8") + raw_body
    digest = hmac.new(key.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: bytes, signature: str | None, key: str, notification_url: str = "") -> bool:
    if not signature or not key:
        return False
    expected = compute_signature(raw_body, key, notification_url)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "replace"))


def check_signature(raw_body: bytes, signature: str | None) -> bool:
    """
    Apply the signature policy. Returns whether the delivery was verified.

    Raises WebhookSignatureError when the delivery must be rejected.
    """
    key = resolve_signature_key()
    if key:
        if not verify_signature(raw_body, signature, key, resolve_notification_url()):
            raise WebhookSignatureError("Invalid signature")
        return True

    if get_square_config().signature_key_ever_set:
        raise WebhookSignatureError("Invalid signature: signature key was removed")
    if current_app.config.get("SQUARE_WEBHOOK_REQUIRE_SIGNATURE"):
        raise WebhookSignatureError("Invalid signature: no signature key configured")

    current_app.logger.warning("Square webhook signature key not configured; processing unverified event")
    return False


def _extract_order(event: dict) -> tuple[str | None, str | None, dict | None]:
    """(order_id, state, full order or None) from an event body."""
    data = event.get("data") or {}
    obj = data.get("object") or {}
    order = obj.get("order")
    if isinstance(order, dict):
        return order.get("id") or data.get("id"), order.get("state"), order
    for key in _ORDER_STUB_KEYS:
        stub = obj.get(key)
        if isinstance(stub, dict):
            return stub.get("order_id") or data.get("id"), stub.get("state"), None
    return data.get("id"), None, None


def find_processed_log(event_id: str) -> WebhookLog | None:
    return db.session.query(WebhookLog).filter_by(dedup_key=event_id).first()


def _build_log(
    event: dict,
    *,
    event_id: str,
    outcome: str,
    success: bool,
    verified: bool,
    received_at,
    actor: Actor,
    order_id: str | None = None,
    error_message: str | None = None,
    sync_result: dict | None = None,
    payload: str | None = None,
    replay_of_id: int | None = None,
) -> WebhookLog:
    return WebhookLog(
        event_id=event_id,
        dedup_key=None if outcome == OUTCOME_REJECTED else event_id,
        outcome=outcome,
        event_type=str(event.get("type") or "unknown"),
        merchant_id=event.get("merchant_id"),
        order_id=order_id,
        processed=outcome != OUTCOME_REJECTED,
        success=success,
        verified=verified,
        error_message=error_message,
        sync_result=sync_result,
        payload=payload,
        replay_of_id=replay_of_id,
        actor_type=actor.kind,
        actor_id=actor.ident,
        received_at=received_at,
        processed_at=utcnow(),
    )


def _insert_log(log: WebhookLog) -> WebhookLog | None:
    """Insert a log row on its own. None when the dedup key is already taken."""
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return log


def _consume_order(order_id: str, order: dict | None, *, source: str, deadline: float) -> SyncResult:
    """Run the sale through the consumption engine without committing."""
    if order is None:
        # Stub-only payload: fetch the full order before consuming
        with client_from_config() as client:
            order = client.retrieve_order(order_id)
    lines = sale_lines_from_order(order)
    try:
        return consume_sale(order_id, lines, source=source, commit=False, deadline=deadline)
    except ConsumptionTimeout as exc:
        raise WebhookTimeout(str(exc)) from exc


def handle_webhook(raw_body: bytes, signature: str | None) -> WebhookOutcome:
    received_at = utcnow()
    deadline = deadline_after(current_app.config.get("SQUARE_WEBHOOK_TIMEOUT_SECONDS", 60))
    actor = Actor.system(SOURCE_SQUARE_WEBHOOK)

    try:
        event = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return WebhookOutcome(400, {"error": "Invalid JSON body"})
    if not isinstance(event, dict):
        return WebhookOutcome(400, {"error": "Webhook body must be a JSON object"})

    event_id = event.get("event_id")
    event_type = event.get("type")
    if not event_id or not event_type:
        return WebhookOutcome(400, {"error": "event_id and type are required"})
    event_id = str(event_id)
    order_id, state, order = _extract_order(event)

    try:
        verified = check_signature(raw_body, signature)
    except WebhookSignatureError as e:
        current_app.logger.warning("Rejected Square webhook %s: %s", event_id, e)
        if find_processed_log(event_id) is None:
            _insert_log(_build_log(
                event, event_id=event_id, outcome=OUTCOME_REJECTED, success=False, verified=False,
                received_at=received_at, actor=actor, order_id=order_id, error_message=str(e),
            ))
        return WebhookOutcome(401, {"error": str(e)})

    ignore_reason = None
    if event_type not in ORDER_EVENT_TYPES:
        ignore_reason = f"event type {event_type} is not handled"
    elif state != ORDER_STATE_COMPLETED:
        ignore_reason = f"order state {state or 'unknown'} is not {ORDER_STATE_COMPLETED}"
    if ignore_reason:
        log = _insert_log(_build_log(
            event, event_id=event_id, outcome=OUTCOME_IGNORED, success=True, verified=verified,
            received_at=received_at, actor=actor, order_id=order_id, error_message=None,
            sync_result={"ignored": ignore_reason},
        ))
        if log is None:
            return WebhookOutcome(200, {"status": "Already processed", "event_id": event_id})
        return WebhookOutcome(200, {"status": "Ignored", "reason": ignore_reason}, log.id)

    existing = find_processed_log(event_id)
    if existing is not None:
        current_app.logger.info("Square webhook %s already processed (log %s)", event_id, existing.id)
        return WebhookOutcome(200, {"status": "Already processed", "event_id": event_id}, existing.id)

    payload = raw_body.decode("utf-8", "replace")
    try:
        result = _consume_order(order_id, order, source=SOURCE_SQUARE_WEBHOOK, deadline=deadline)
    except Exception as e:
        db.session.rollback()
        if isinstance(e, (WebhookError, SquareAPIError, ValueError)):
            current_app.logger.warning("Square webhook %s failed: %s", event_id, e)
        else:
            current_app.logger.exception("Failed to process Square webhook %s", event_id)
        log = _insert_log(_build_log(
            event, event_id=event_id, outcome=OUTCOME_FAILED, success=False, verified=verified,
            received_at=received_at, actor=actor, order_id=order_id, error_message=str(e),
            payload=payload,
        ))
        return WebhookOutcome(500, {"error": "Webhook processing failed"}, log.id if log else None)

    log = _build_log(
        event, event_id=event_id, outcome=OUTCOME_PROCESSED, success=result.success, verified=verified,
        received_at=received_at, actor=actor, order_id=order_id,
        error_message="; ".join(result.errors) or None, sync_result=result.to_dict(), payload=payload,
    )
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        db.session.rollback()
        current_app.logger.info("Square webhook %s lost dedup race; rolled back", event_id)
        return WebhookOutcome(200, {"status": "Already processed", "event_id": event_id})

    current_app.logger.info(
        "Processed Square webhook %s (%s) for order %s: success=%s", event_id, event_type, order_id, result.success
    )
    return WebhookOutcome(200, {"status": "Processed", "result": result.to_dict()}, log.id)


def list_webhook_logs(limit: int = 100) -> list[WebhookLog]:
    limit = max(1, min(int(limit), MAX_LOG_LIMIT))
    return (
        db.session.query(WebhookLog)
        .order_by(WebhookLog.received_at.desc(), WebhookLog.id.desc())
        .limit(limit)
        .all()
    )


def get_webhook_log(log_id: int) -> WebhookLog:
    log = db.session.get(WebhookLog, log_id)
    if log is None:
        raise WebhookLogNotFound(f"Webhook log {log_id} not found")
    return log


def get_webhook_stats() -> dict:
    total = db.session.query(WebhookLog).count()
    successful = db.session.query(WebhookLog).filter(WebhookLog.success.is_(True)).count()
    return {
        "total": total,
        "successful": successful,
        "failed": total - successful,
        "recent": [log.to_dict() for log in list_webhook_logs(limit=10)],
    }


def replay_webhook_log(log_id: int, actor: Actor) -> tuple[WebhookLog, SyncResult]:
    """
    Reprocess the stored payload of a failed delivery.

    The replay is recorded under "<event_id>:replay:<n>" and points back at
    the original through replay_of_id.
    """
    original = get_webhook_log(log_id)
    if original.outcome != OUTCOME_FAILED or original.success:
        raise WebhookError("Only failed deliveries can be replayed")
    if not original.payload:
        raise WebhookError(f"Webhook log {log_id} has no stored payload")

    event = json.loads(original.payload)
    order_id, _state, order = _extract_order(event)
    attempt = db.session.query(WebhookLog).filter_by(replay_of_id=original.id).count() + 1
    replay_id = f"{original.event_id}:replay:{attempt}"
    received_at = utcnow()
    deadline = deadline_after(current_app.config.get("SQUARE_WEBHOOK_TIMEOUT_SECONDS", 60))

    try:
        result = _consume_order(order_id, order, source=SOURCE_MANUAL_SYNC, deadline=deadline)
    except Exception:
        db.session.rollback()
        raise

    log = _build_log(
        event, event_id=replay_id, outcome=OUTCOME_PROCESSED, success=result.success,
        verified=original.verified, received_at=received_at, actor=actor, order_id=order_id,
        error_message="; ".join(result.errors) or None, sync_result=result.to_dict(),
        payload=original.payload, replay_of_id=original.id,
    )
    db.session.add(log)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise WebhookError(f"Replay {replay_id} is already in progress")
    current_app.logger.info("Replayed webhook log %s as %s: success=%s", original.id, replay_id, result.success)
    return log, result


# SUBSCRIPTION

def register_webhook_subscription(actor: Actor, notification_url: str | None = None) -> SquareConfig:
    """
    Subscribe this endpoint to Square's order events.

    Stores the subscription id, its notification URL and the signature key
    Square issues for it. Only one live subscription is tracked.
    """
    config = get_square_config()
    if config.id is None:
        raise WebhookError("Save the Square connection settings first")
    if config.webhook_subscription_id:
        raise WebhookError(f"Webhook subscription {config.webhook_subscription_id} is already registered")
    url = notification_url or resolve_notification_url()
    if not url:
        raise WebhookError("A notification URL is required")

    with client_from_config(config) as client:
        subscription = client.create_webhook_subscription(url, list(ORDER_EVENT_TYPES))

    config.webhook_subscription_id = subscription["id"]
    config.webhook_notification_url = subscription.get("notification_url") or url
    if subscription.get("signature_key"):
        config.webhook_signature_key = subscription["signature_key"]
        config.signature_key_ever_set = True
    config.updated_by = str(actor)
    db.session.commit()

    current_app.logger.info("Registered Square webhook subscription %s -> %s", subscription["id"], url)
    return config


def remove_webhook_subscription(actor: Actor) -> SquareConfig:
    config = get_square_config()
    subscription_id = config.webhook_subscription_id
    if not subscription_id:
        raise WebhookError("No webhook subscription is registered")

    with client_from_config(config) as client:
        client.delete_webhook_subscription(subscription_id)

    # Keep the signature key: deliveries already in flight are still signed with it
    config.webhook_subscription_id = None
    config.updated_by = str(actor)
    db.session.commit()

    current_app.logger.info("Removed Square webhook subscription %s", subscription_id)
    return config


# SIMULATION

def simulate_webhook_event(order_data: dict) -> WebhookOutcome:
    """
    Push a COMPLETED test order through the normal intake.

    order_data: {"id"?, "location_id"?, "line_items": [...]} in Square's
    order shape. The event is signed with the configured key when there is
    one, so it passes the signature policy like a real delivery.
    """
    if not isinstance(order_data, dict):
        raise WebhookError("order must be an object")
    line_items = order_data.get("line_items") or []
    if not isinstance(line_items, list):
        raise WebhookError("line_items must be a list")

    token = uuid.uuid4().hex
    now = to_utc_z(utcnow())
    order_id = str(order_data.get("id") or f"test_order_{token[:12]}")
    event = {
        "merchant_id": "test_merchant",
        "type": "order.created",
        "event_id": f"test_{token}",
        "created_at": now,
        "data": {
            "type": "order",
            "id": order_id,
            "object": {
                "order": {
                    "id": order_id,
                    "location_id": order_data.get("location_id") or get_square_config().location_id or "test_location",
                    "state": ORDER_STATE_COMPLETED,
                    "line_items": line_items,
                    "created_at": now,
                    "updated_at": now,
                },
            },
        },
    }
    raw_body = json.dumps(event).encode("utf-8")
    key = resolve_signature_key()
    signature = compute_signature(raw_body, key, resolve_notification_url()) if key else None
    return handle_webhook(raw_body, signature)
