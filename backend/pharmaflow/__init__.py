# backend/pharmaflow/__init__.py
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

    # Lock waits on SQLite are bounded by the transition request time limit
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        connect_args = dict(engine_options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config["WORKFLOW_REQUEST_TIMEOUT_SECONDS"])
        engine_options["connect_args"] = connect_args
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.workflow_stages import workflow_stages_bp
    from .routes.workflow_transitions import workflow_transitions_bp
    from .routes.stage_permissions import stage_permissions_bp
    from .routes.workflow import workflow_bp
    from .routes.procurement import procurement_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(workflow_stages_bp)
    app.register_blueprint(workflow_transitions_bp)
    app.register_blueprint(stage_permissions_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(procurement_bp)

    from .api_errors import register_error_handlers
    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    from .services.workflow_engine import build_workflow_engine
    build_workflow_engine(app)

    return app
