# backend/posledger/__init__.py
import os

from flask import Flask

from .config import Config
from .extensions import db, migrate

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(config_object=None) -> Flask:
    """
    Build the application.

    config_object overrides Config; it may be a mapping (tests pass the
    in-memory database URI this way) or a config class.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_object, dict):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.invoices import invoices_bp
    from .routes.returns import returns_bp
    from .routes.ledger import ledger_bp
    from .routes.accounting import accounting_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(accounting_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
