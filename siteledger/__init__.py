"""
SiteLedger
Flask Application Factory.

Usage:
    from siteledger import create_app
    app = create_app()                      # defaults to APP_ENV or "development"
    app = create_app("testing")             # explicit config
    app = create_app("testing", {"SQLALCHEMY_DATABASE_URI": "sqlite:///ledger.db"})
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from siteledger.config import config
from siteledger.models import db
from siteledger.middleware.actor_auth import init_actor_auth
from siteledger.middleware.logging_config import configure_logging
from siteledger.middleware.rate_limiter import init_rate_limits
from siteledger.middleware.timing import init_request_timing
from siteledger.services.change_notifier import notifier
from siteledger.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides: Optional mapping applied on top of the config class
                   (e.g. a per-test database URI).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    config_class = config[config_name]
    config_class.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    notifier.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_actor_auth(app)
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Models (registered on db.metadata before create_all) ─────────────
    from siteledger.models import auth as _auth_models               # noqa: F401
    from siteledger.models import catalog as _catalog_models         # noqa: F401
    from siteledger.models import change_event as _event_models      # noqa: F401
    from siteledger.models import daily_log as _daily_log_models     # noqa: F401
    from siteledger.models import evidence as _evidence_models       # noqa: F401
    from siteledger.models import ledger as _ledger_models           # noqa: F401
    from siteledger.models import project as _project_models         # noqa: F401
    from siteledger.models import requisition as _requisition_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        url = db.engine.url
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from siteledger.blueprints import register_blueprints
    register_blueprints(app)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("dispatch-events")
    def dispatch_events_cmd():
        """Deliver change events left undelivered by earlier failures, parked ones included."""
        count = notifier.dispatch_pending(include_parked=True)
        logger.info("Dispatched %s pending change events.", count)

    return app
