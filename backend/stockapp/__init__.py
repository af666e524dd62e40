# backend/stockapp/__init__.py
from flask import Flask, g, request

from .config import Config
from .extensions import db, migrate
from .logging_setup import setup_logging


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    setup_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .store import init_store
    init_store(app)

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    if app.config.get("BOOTSTRAP_ADMIN_ON_START"):
        _bootstrap_admin(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.groups import groups_bp
    from .routes.products import products_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(groups_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(users_bp)

    @app.teardown_request
    def teardown_identity(exc):
        context = g.pop("identity_context", None)
        if context is not None:
            context.teardown()

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
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def _bootstrap_admin(app: Flask) -> None:
    """Run the idempotent admin bootstrap; a failure is logged and never stops startup."""
    from .services.bootstrap_service import ensure_initial_admin
    from .store import get_store, new_auth_provider

    with app.app_context():
        result = ensure_initial_admin(
            get_store(),
            new_auth_provider,
            email=app.config.get("BOOTSTRAP_ADMIN_EMAIL"),
            password=app.config.get("BOOTSTRAP_ADMIN_PASSWORD"),
            name=app.config.get("BOOTSTRAP_ADMIN_NAME") or "Administrator",
        )
    if not result:
        app.logger.error("Initial admin bootstrap failed: %s", result.error)
