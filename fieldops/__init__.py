"""
Field Operations Platform
Flask Application Factory.

Usage:
    from fieldops import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from fieldops.config import config
from fieldops.models import db
from fieldops.middleware.jwt_auth import init_jwt_middleware
from fieldops.middleware.logging_config import configure_logging
from fieldops.middleware.rate_limiter import init_rate_limits
from fieldops.middleware.timing import init_request_timing

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
    default_limits=[],                     # no global limit: apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    # ProductionConfig validates its environment on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from fieldops.models import auth as _auth_models                # noqa: F401
    from fieldops.models import project as _project_models          # noqa: F401
    from fieldops.models import epm as _epm_models                  # noqa: F401
    from fieldops.models import operations as _operations_models    # noqa: F401
    from fieldops.models import audit as _audit_models              # noqa: F401
    from fieldops.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables for local dev (migrations own production) ─────
    if config_name != "production":
        if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from fieldops.blueprints.epm_bp import epm_bp
    from fieldops.blueprints.health_bp import health_bp
    from fieldops.blueprints.template_bp import template_bp

    app.register_blueprint(epm_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-epm-demo")
    def seed_epm_demo_cmd():
        """Seed a demo project with 3 stages and the hull blast inspection template."""
        from fieldops.services.epm.seed import seed_epm_demo
        from fieldops.services.epm.service import build_epm_service
        result = seed_epm_demo(build_epm_service())
        if result["created"]:
            logger.info("Seeded EPM demo project %s", result["project_id"])
        else:
            logger.info("EPM demo project %s already present", result["project_id"])

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
