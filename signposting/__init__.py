"""
Signposting library service.

    from signposting import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from signposting.config import config
from signposting.middleware.caller_context import init_caller_context
from signposting.middleware.logging_config import configure_logging
from signposting.middleware.timing import init_request_timing
from signposting.models import db
from signposting.services.view_cache import init_view_cache

logger = logging.getLogger(__name__)

migrate = Migrate()

_WRITE_METHODS = ("POST", "PUT", "PATCH")


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    if "sqlite" not in type(dbapi_conn).__module__:
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _load_config(app, config_name):
    config_cls = config[config_name]
    if config_name == "production":
        app.config.from_object(config_cls())
    else:
        app.config.from_object(config_cls)


def _cors_origins(raw):
    if not raw or raw == "*":
        return "*"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description or "Unsupported media type"}, 415

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s: %s", request.path, e, exc_info=True)
        return {"error": "Internal server error"}, 500


def create_app(config_name=None):
    """Build the app for ``config_name`` (development / testing / production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    _load_config(app, config_name)
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app, origins=_cors_origins(app.config.get("CORS_ORIGINS", "*")))
    init_view_cache(app)

    init_request_timing(app)
    init_caller_context(app)

    @app.before_request
    def _require_json_body():
        if request.method not in _WRITE_METHODS or not request.path.startswith("/api/"):
            return None
        if request.data and "json" not in (request.content_type or ""):
            abort(415, description="Content-Type must be application/json")
        return None

    # Model modules must be imported before create_all / autogenerate.
    from signposting.models import library, tenant  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:  # noqa: BLE001
            logger.warning("create_all skipped: %s", exc)

    from signposting.blueprints.health_bp import health_bp
    from signposting.blueprints.library_bp import library_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(library_bp)
    _register_error_handlers(app)

    logger.debug("App ready: env=%s view_cache=%s", config_name,
                 app.extensions["view_cache"].backend_name)
    return app
