# backend/branchpos/__init__.py
from __future__ import annotations

import os

from flask import Flask

from .config import Config
from .extensions import db, migrate
from .logging_config import configure_logging

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before the extensions read the config
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_FORMAT"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    # Callbacks (entry, exc) run when an inventory log append fails
    app.extensions.setdefault("branchpos_audit_error_handlers", [])

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.transfers import transfers_bp
    from .routes.items import items_bp
    from .routes.inventory_log import inventory_log_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(inventory_log_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
