"""
Occupancy Transition Service.

    from occupancy import create_app
    app = create_app()                              # APP_ENV or "development"
    app = create_app("testing", transport=fake)     # swap a notification collaborator
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from occupancy.config import config
from occupancy.middleware.logging_config import configure_logging
from occupancy.middleware.rate_limiter import init_rate_limits
from occupancy.middleware.timing import init_request_timing
from occupancy.models import db
from occupancy.services.collaborators import init_collaborators

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ships with FK checks off; detail rows rely on them."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = [o.strip() for o in app.config.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    if origins == ["*"]:
        CORS(app)
    elif origins:
        CORS(app, origins=origins)


def _init_schema(app):
    # Every mapped class must be imported before create_all / autogenerate
    from occupancy.models import audit, dispatch, notification, recipients, transition, unit  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            # Migrations stay authoritative; the app still boots for `flask db upgrade`
            app.logger.warning("Schema bootstrap skipped: %s", exc)


def _register_blueprints(app):
    from occupancy.blueprints.recipients_bp import recipients_bp
    from occupancy.blueprints.transition_bp import transition_bp

    for bp in (transition_bp, recipients_bp):
        app.register_blueprint(bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Occupancy Transition Service"}


def _register_cli(app):
    @app.cli.command("normalize-legacy-statuses")
    def normalize_legacy_statuses_cmd():
        """Rewrite pre-lifecycle statuses and owner renewals in place."""
        from occupancy.services.legacy_normalization import normalize_legacy_statuses

        counts = normalize_legacy_statuses()
        logger.info(
            "Legacy data normalized: %(request_statuses)s requests, "
            "%(log_statuses)s log entries, %(renewal_categories)s owner renewals",
            counts,
        )


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=True)
        return {"error": "Internal server error"}, 500


def create_app(config_name=None, **collaborators):
    """
    Build the Flask application.

    Args:
        config_name: "development", "testing" or "production"; falls back to
                     the APP_ENV environment variable, then "development".
        **collaborators: ``ownership``, ``renderer`` and/or ``transport``
                     replacing the defaults used by the notification pipeline.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name or os.getenv("APP_ENV", "development")])

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    init_collaborators(app, **collaborators)

    _init_schema(app)
    _register_blueprints(app)
    _register_cli(app)
    _register_error_handlers(app)

    # Limits attach to registered blueprints
    init_rate_limits(app, limiter)
    return app
