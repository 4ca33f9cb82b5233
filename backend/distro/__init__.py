# backend/distro/__init__.py
from flask import Flask

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

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.allocations import allocations_bp
    from .routes.collections import collections_bp, cheques_bp
    from .routes.catalog import products_bp, customers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(allocations_bp)
    app.register_blueprint(collections_bp)
    app.register_blueprint(cheques_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("SCHEMA_CHECK_ON_STARTUP"):
        from .services.schema_service import verify_schema
        with app.app_context():
            verify_schema()

    return app
