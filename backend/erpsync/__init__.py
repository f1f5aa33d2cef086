# backend/erpsync/__init__.py
import logging
import sys

from flask import Flask

from .config import Config
from .extensions import db, migrate

LOG_FORMAT = "[%(asctime)s][%(levelname)s] %(message)s"


def configure_logging(app: Flask) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    app.logger.handlers = [handler]
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    app.logger.propagate = False


def create_app(test_config: dict | None = None, gateway=None) -> Flask:
    """
    Application factory.

    `test_config` overrides Config before extensions are bound; `gateway`
    replaces the HTTP gateway (tests pass a fake one).
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    if gateway is None:
        from .services.gateway import HttpGateway
        gateway = HttpGateway.from_config(app.config)
    app.extensions["erpsync_gateway"] = gateway

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sync import sync_bp
    from .routes.audit import audit_bp
    from .routes.catalog import catalog_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(catalog_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
