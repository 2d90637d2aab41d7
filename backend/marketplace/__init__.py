# backend/marketplace/__init__.py
import atexit
from concurrent.futures import ThreadPoolExecutor

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Outbound clients, owned by the app and resolved from app.extensions
    from .services.email_service import Mailer
    from .services.storage_service import ObjectStorage
    from .services.auth_service import AuthClient
    from .services.notify_service import VisitNotifier

    app.extensions["mailer"] = Mailer.from_config(app.config)
    app.extensions["storage"] = ObjectStorage.from_config(app.config)
    app.extensions["auth_client"] = AuthClient.from_config(app.config)
    app.extensions["visit_notifier"] = VisitNotifier.from_config(app.config)
    app.extensions["email_executor"] = ThreadPoolExecutor(
        max_workers=app.config["EMAIL_WORKERS"],
        thread_name_prefix="order-email",
    )
    # In-flight sends finish and record their outcome before the process exits
    atexit.register(app.extensions["email_executor"].shutdown, wait=True)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.checkout import checkout_bp
    from .routes.admin_auth import admin_auth_bp
    from .routes.admin_products import admin_products_bp
    from .routes.admin_orders import admin_orders_bp
    from .routes.cron import cron_bp
    from .routes.notify import notify_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(admin_auth_bp)
    app.register_blueprint(admin_products_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(notify_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        base_url = app.config.get("APP_BASE_URL")
        if base_url:
            allowed_origins.add(base_url.rstrip("/"))
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
