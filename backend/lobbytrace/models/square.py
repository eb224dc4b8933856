from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

MAPPING_ACTIVE = "ACTIVE"
MAPPING_DISABLED = "DISABLED"

SQUARE_CONFIG_KEY = "config:square"

OUTCOME_PROCESSED = "PROCESSED"
OUTCOME_IGNORED = "IGNORED"
OUTCOME_FAILED = "FAILED"
OUTCOME_REJECTED = "REJECTED"


class ProductMapping(db.Model):
    """
    Link from one internal product (recipe) to one Square ITEM_VARIATION.

    Sale lines are routed to ingredient consumption through ACTIVE mappings.
    Disabling is the only supported delete; rows are never removed.

    UNIQUENESS: (product_id, square_variation_id). save_mapping relies on the
    constraint as an insert-if-absent instead of a separate existence check.
    """
    __tablename__ = "product_square_mappings"
    __table_args__ = (
        db.UniqueConstraint("product_id", "square_variation_id", name="uq_mappings_product_variation"),
        db.Index("ix_mappings_variation_status", "square_variation_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    square_catalog_object_id = db.Column(db.String(64), nullable=False)
    square_variation_id = db.Column(db.String(64), nullable=False)

    # Denormalized display names
    product_name = db.Column(db.String(255), nullable=False)
    square_item_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=MAPPING_ACTIVE, index=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    @property
    def sync_enabled(self) -> bool:
        return self.status == MAPPING_ACTIVE

    def __repr__(self) -> str:
        return (
            f"<ProductMapping id={self.id} product_id={self.product_id} "
            f"variation={self.square_variation_id!r} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "square_catalog_object_id": self.square_catalog_object_id,
            "square_variation_id": self.square_variation_id,
            "product_name": self.product_name,
            "square_item_name": self.square_item_name,
            "status": self.status,
            "sync_enabled": self.sync_enabled,
            "last_synced_at": to_utc_z(self.last_synced_at),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WebhookLog(db.Model):
    """
    One row per inbound Square delivery.

    dedup_key carries the event id for every delivery that got past signature
    checks and is unique: the row is inserted in the same transaction as the
    stock movements it caused, so a concurrent re-delivery either sees the row
    or fails to insert its own and rolls back. Rejected deliveries keep
    dedup_key NULL so a forged request cannot block the genuine event.
    """
    __tablename__ = "square_webhook_logs"
    __table_args__ = (
        db.UniqueConstraint("dedup_key", name="uq_webhook_logs_dedup_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_id = db.Column(db.String(160), nullable=False, index=True)
    dedup_key = db.Column(db.String(160), nullable=True)
    outcome = db.Column(db.String(16), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False)
    merchant_id = db.Column(db.String(64), nullable=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)

    processed = db.Column(db.Boolean, nullable=False, default=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    verified = db.Column(db.Boolean, nullable=False, default=False)
    error_message = db.Column(db.Text, nullable=True)
    sync_result = db.Column(db.JSON, nullable=True)
    payload = db.Column(db.Text, nullable=True)
    replay_of_id = db.Column(db.Integer, db.ForeignKey("square_webhook_logs.id"), nullable=True)

    actor_type = db.Column(db.String(16), nullable=False)
    actor_id = db.Column(db.String(128), nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self, include_payload: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "outcome": self.outcome,
            "event_type": self.event_type,
            "merchant_id": self.merchant_id,
            "order_id": self.order_id,
            "processed": self.processed,
            "success": self.success,
            "verified": self.verified,
            "error_message": self.error_message,
            "sync_result": self.sync_result,
            "replay_of_id": self.replay_of_id,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "received_at": to_utc_z(self.received_at),
            "processed_at": to_utc_z(self.processed_at),
        }
        if include_payload:
            data["payload"] = self.payload
        return data


class SquareConfig(db.Model):
    """
    Square connection settings, one row per installation.

    Looked up by the fixed key SQUARE_CONFIG_KEY, never by "first row".
    """
    __tablename__ = "square_config"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_square_config_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False, default=SQUARE_CONFIG_KEY)

    application_id = db.Column(db.String(128), nullable=True)
    access_token = db.Column(db.String(255), nullable=True)
    location_id = db.Column(db.String(64), nullable=True)
    webhook_signature_key = db.Column(db.String(255), nullable=True)
    # Once a signing key has been stored, unsigned webhooks are always rejected
    signature_key_ever_set = db.Column(db.Boolean, nullable=False, default=False)
    # Set while a Square webhook subscription registered from here is live
    webhook_subscription_id = db.Column(db.String(64), nullable=True)
    webhook_notification_url = db.Column(db.String(512), nullable=True)

    environment = db.Column(db.String(16), nullable=False, default="sandbox")
    auto_sync_enabled = db.Column(db.Boolean, nullable=False, default=False)
    sync_frequency = db.Column(db.String(16), nullable=False, default="realtime")
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self, reveal_secrets: bool = False) -> dict:
        def _mask(value):
            if not value:
                return None
            if reveal_secrets:
                return value
            return "****" + value[-4:] if len(value) > 4 else "****"

        return {
            "key": self.key,
            "application_id": self.application_id,
            "access_token": _mask(self.access_token),
            "location_id": self.location_id,
            "webhook_signature_key": _mask(self.webhook_signature_key),
            "signature_key_ever_set": bool(self.signature_key_ever_set),
            "webhook_subscription_id": self.webhook_subscription_id,
            "webhook_notification_url": self.webhook_notification_url,
            "environment": self.environment,
            "auto_sync_enabled": bool(self.auto_sync_enabled),
            "sync_frequency": self.sync_frequency,
            "last_sync_at": to_utc_z(self.last_sync_at),
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
