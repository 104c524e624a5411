# backend/tradebook/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Tax rule cache + engine wiring (owned by the app, not module globals)
    from .services.tax_service import init_tax_cache
    from .services.engine import init_engine
    init_tax_cache(app)
    init_engine(app)

    # Register blueprints
    from .routes.errors import register_error_handlers
    from .routes.invoices import invoices_bp
    from .routes.ledger import ledger_bp
    from .routes.stock import stock_bp

    app.register_blueprint(invoices_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(stock_bp)
    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
