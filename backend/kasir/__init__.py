# backend/kasir/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .services.connectivity import HttpReachabilityProbe, StaticReachabilityProbe
from .services.remote_backend import HttpRemoteBackend


def _init_sync_clients(app: Flask) -> None:
    url = app.config.get("REMOTE_API_URL")
    if not url:
        app.extensions.setdefault("kasir.remote", None)
        app.extensions.setdefault("kasir.probe", StaticReachabilityProbe(online=False))
        return
    timeout = app.config.get("REMOTE_TIMEOUT_SECONDS", 10)
    app.extensions.setdefault(
        "kasir.remote",
        HttpRemoteBackend(url, app.config.get("REMOTE_API_KEY"), timeout=timeout),
    )
    app.extensions.setdefault(
        "kasir.probe",
        HttpReachabilityProbe(f"{url.rstrip('/')}/rest/v1/", timeout=min(timeout, 3)),
    )


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    _init_sync_clients(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.cart import cart_bp
    from .routes.sales import sales_bp
    from .routes.promotions import promotions_bp
    from .routes.customers import customers_bp
    from .routes.sync import sync_bp
    from .routes.reports import reports_bp
    from .routes.books import books_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(promotions_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(books_bp)

    from .routes.errors import register_error_handlers
    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:8081",
            "http://127.0.0.1:8081",
            "http://localhost:19006",
            "http://127.0.0.1:19006",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
