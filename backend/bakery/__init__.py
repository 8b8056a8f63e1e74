# backend/bakery/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Service modules log under "bakery.services.*"
    logging.getLogger("bakery").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.batches import batches_bp
    from .routes.transactions import transactions_bp
    from .routes.production import production_bp
    from .routes.returns import returns_bp
    from .routes.reconciliation import reconciliation_bp
    from .routes.movements import movements_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(production_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(reconciliation_bp)
    app.register_blueprint(movements_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
