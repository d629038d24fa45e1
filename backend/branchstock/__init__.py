# backend/branchstock/__init__.py
from flask import Flask

from .config import Config, engine_options_for
from .extensions import db, migrate, ranking_refresher


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(
            app.config["SQLALCHEMY_DATABASE_URI"],
            app.config["SQLITE_BUSY_TIMEOUT_SECONDS"],
        ),
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    ranking_refresher.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Stock locks are released whenever the owning session transaction ends
    from .services.locking import install_session_hooks
    install_session_hooks()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.sales import sales_bp
    from .routes.ledger import ledger_bp
    from .routes.rankings import rankings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(rankings_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
