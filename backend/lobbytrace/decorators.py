# Overview: Request decorators for the management API.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .actors import Actor


def _token_table() -> dict[str, str]:
    """Parse API_TOKENS ("token:user_id,token2:user_id2") into {token: user_id}."""
    raw = current_app.config.get("API_TOKENS") or ""
    if isinstance(raw, dict):
        return dict(raw)
    table = {}
    for pair in raw.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            table[token] = user_id
    return table


def resolve_user_id(token: str) -> str | None:
    match = None
    for known, user_id in _token_table().items():
        # Compare every entry so lookup time does not depend on which token matched
        if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
            match = user_id
    return match


def require_auth(f):
    """
    Require a bearer token and establish the acting user.

    Sets the following Flask g attributes:
    - g.current_user_id: user id the token resolves to
    - g.actor: Actor.user(current_user_id), recorded on every write

    Returns 401 if the Authorization header is missing or the token is unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        user_id = resolve_user_id(token) if token else None
        if not user_id:
            current_app.logger.warning("Rejected API token for %s %s", request.method, request.path)
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user_id = user_id
        g.actor = Actor.user(user_id)

        return f(*args, **kwargs)

    return decorated_function
