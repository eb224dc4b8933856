# Overview: Singleton Square connection settings, looked up by a fixed key.

from __future__ import annotations

from flask import current_app

from ..actors import Actor
from ..extensions import db
from ..models import SquareConfig
from ..models.square import SQUARE_CONFIG_KEY
from .square_client import SQUARE_API_BASE, SquareAPIError, SquareClient

SYNC_FREQUENCIES = ("realtime", "hourly", "daily")

CONFIG_MUTABLE_FIELDS = {
    "application_id", "access_token", "location_id", "webhook_signature_key",
    "environment", "auto_sync_enabled", "sync_frequency",
}


class SquareConfigError(ValueError):
    """Raised when Square settings are missing or invalid."""
    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


def get_square_config() -> SquareConfig:
    """Stored config, or an unsaved default row. Never None."""
    config = db.session.query(SquareConfig).filter_by(key=SQUARE_CONFIG_KEY).first()
    if config is not None:
        return config
    return SquareConfig(
        key=SQUARE_CONFIG_KEY,
        environment=current_app.config.get("SQUARE_ENVIRONMENT", "sandbox"),
        auto_sync_enabled=False,
        sync_frequency="realtime",
        signature_key_ever_set=False,
    )


def validate_square_config(values: dict) -> list[str]:
    errors: list[str] = []
    if not values.get("application_id"):
        errors.append("Application ID is required")
    if not values.get("access_token"):
        errors.append("Access Token is required")
    if not values.get("location_id"):
        errors.append("Location ID is required")
    if values.get("environment") not in SQUARE_API_BASE:
        errors.append("Environment must be either sandbox or production")
    if values.get("sync_frequency", "realtime") not in SYNC_FREQUENCIES:
        errors.append("Sync frequency must be realtime, hourly or daily")
    return errors


def save_square_config(patch: dict, *, actor: Actor) -> SquareConfig:
    """Create-or-update the single config row."""
    config = get_square_config()
    merged = {k: getattr(config, k) for k in CONFIG_MUTABLE_FIELDS}
    merged.update({k: v for k, v in patch.items() if k in CONFIG_MUTABLE_FIELDS})

    errors = validate_square_config(merged)
    if errors:
        raise SquareConfigError("Invalid Square configuration", errors)

    for k, v in merged.items():
        setattr(config, k, v)
    if config.webhook_signature_key:
        config.signature_key_ever_set = True
    config.updated_by = str(actor)

    if config.id is None:
        db.session.add(config)
    db.session.commit()
    return config


def resolve_signature_key() -> str | None:
    """Stored key first, then the SQUARE_WEBHOOK_SIGNATURE_KEY setting."""
    config = get_square_config()
    return config.webhook_signature_key or current_app.config.get("SQUARE_WEBHOOK_SIGNATURE_KEY") or None


def resolve_notification_url() -> str:
    """URL Square signs deliveries with: the registered subscription's, else SQUARE_WEBHOOK_NOTIFICATION_URL."""
    config = get_square_config()
    return config.webhook_notification_url or current_app.config.get("SQUARE_WEBHOOK_NOTIFICATION_URL", "") or ""


def client_from_config(config: SquareConfig | None = None, *, transport=None) -> SquareClient:
    config = config or get_square_config()
    # Tests inject an httpx.MockTransport through app config
    transport = transport or current_app.config.get("SQUARE_HTTP_TRANSPORT")
    if not config.access_token:
        raise SquareAPIError("Square access token is not configured")
    return SquareClient(
        config.access_token,
        config.environment,
        api_version=current_app.config.get("SQUARE_API_VERSION", "2023-10-18"),
        timeout=current_app.config.get("SQUARE_HTTP_TIMEOUT_SECONDS", 15.0),
        transport=transport,
    )


def mark_synced(when) -> None:
    """Stamp last_sync_at on the stored config. Does not commit."""
    config = db.session.query(SquareConfig).filter_by(key=SQUARE_CONFIG_KEY).first()
    if config is not None:
        config.last_sync_at = when
