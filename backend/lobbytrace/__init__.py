# backend/lobbytrace/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, enable_sqlite_savepoints, migrate


def _allowed_origins(app: Flask) -> set[str]:
    raw = app.config.get("CORS_ALLOWED_ORIGINS") or ""
    if isinstance(raw, (set, list, tuple)):
        return set(raw)
    return {o.strip() for o in raw.split(",") if o.strip()}


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    with app.app_context():
        enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.products import products_bp
    from .routes.square import square_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(square_bp)
    app.register_blueprint(webhooks_bp)

    @app.after_request
    def add_cors_headers(response):
        # The webhook blueprint sets its own open CORS headers
        if "Access-Control-Allow-Origin" in response.headers:
            return response
        origin = request.headers.get("Origin")
        if origin in _allowed_origins(app):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
