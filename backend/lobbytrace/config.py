# backend/lobbytrace/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lobbytrace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///lobbytrace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens for the management API: "token:user_id,token2:user_id2"
    API_TOKENS = os.environ.get("API_TOKENS", "")

    CORS_ALLOWED_ORIGINS = os.environ.get(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:4200,http://127.0.0.1:4200",
    )

    # Square connection defaults; the stored square_config row takes precedence
    SQUARE_ENVIRONMENT = os.environ.get("SQUARE_ENVIRONMENT", "sandbox")
    SQUARE_API_VERSION = os.environ.get("SQUARE_API_VERSION", "2023-10-18")
    SQUARE_HTTP_TIMEOUT_SECONDS = float(os.environ.get("SQUARE_HTTP_TIMEOUT_SECONDS", "15"))

    # Webhook intake
    SQUARE_WEBHOOK_SIGNATURE_KEY = os.environ.get("SQUARE_WEBHOOK_SIGNATURE_KEY", "")
    SQUARE_WEBHOOK_NOTIFICATION_URL = os.environ.get("SQUARE_WEBHOOK_NOTIFICATION_URL", "")
    SQUARE_WEBHOOK_REQUIRE_SIGNATURE = _env_bool("SQUARE_WEBHOOK_REQUIRE_SIGNATURE", False)
    SQUARE_WEBHOOK_TIMEOUT_SECONDS = float(os.environ.get("SQUARE_WEBHOOK_TIMEOUT_SECONDS", "60"))
