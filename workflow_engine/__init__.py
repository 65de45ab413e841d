"""
Workflow Progression & Alert Engine
Flask Application Factory.

Usage:
    from workflow_engine import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from workflow_engine.config import config
from workflow_engine.models import db
from workflow_engine.middleware.logging_config import configure_logging
from workflow_engine.middleware.rate_limiter import init_rate_limits
from workflow_engine.middleware.timing import init_request_timing
from workflow_engine.utils.errors import register_error_handlers

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
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
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
    app.config.from_object(config[config_name])

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Engine singletons (alert cache, role directory) ──────────────────
    from workflow_engine.services.alert_cache import init_alert_cache
    from workflow_engine.services.role_directory import RoleAssignmentDirectory

    init_alert_cache(app)
    app.extensions["role_directory"] = RoleAssignmentDirectory(
        app.config.get("WORKFLOW_DEFAULT_ASSIGNEE_ID"),
    )

    # ── Import all models so Alembic can detect them ─────────────────────
    from workflow_engine.models import audit as _audit_models            # noqa: F401
    from workflow_engine.models import catalog as _catalog_models        # noqa: F401
    from workflow_engine.models import notification as _notification_models  # noqa: F401
    from workflow_engine.models import project as _project_models        # noqa: F401
    from workflow_engine.models import scheduling as _scheduling_models  # noqa: F401
    from workflow_engine.models import workflow as _workflow_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]), exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from workflow_engine.blueprints.alert_bp import alert_bp
    from workflow_engine.blueprints.health_bp import health_bp
    from workflow_engine.blueprints.roles_bp import roles_bp
    from workflow_engine.blueprints.scheduler_bp import scheduler_bp
    from workflow_engine.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(alert_bp)
    app.register_blueprint(roles_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-catalog")
    def seed_catalog_cmd():
        """Seed the default ROOFING workflow catalog (skipped if present)."""
        from workflow_engine.services.catalog import seed_catalog
        count = seed_catalog()
        db.session.commit()
        logger.info("Seeded %s catalog line items.", count)

    @app.cli.command("reconcile-all")
    def reconcile_all_cmd():
        """Rebuild every tracker and alert set from the completion ledger."""
        from workflow_engine.services.workflow_service import reconcile_all
        summary = reconcile_all(actor="cli")
        click.echo(
            f"runs={summary['runs']} changed={summary['changed']} "
            f"unchanged={summary['unchanged']} failed={summary['failed']}"
        )

    @app.cli.command("check-integrity")
    def check_integrity_cmd():
        """Report tracker invariant violations (no repair)."""
        from workflow_engine.services.workflow_service import check_integrity
        report = check_integrity()
        for v in report["violations"]:
            click.echo(f"run={v['run_id']} project={v['project_id']} {v['code']} {v['details']}")
        click.echo(f"checked={report['checked']} violations={len(report['violations'])}")
        if not report["ok"]:
            raise SystemExit(1)

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduled job now."""
        from workflow_engine.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {result['status']} ({result.get('duration_ms', 0)}ms)")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("workflow_engine.services.scheduled_jobs")  # registers @register_job handlers
    from workflow_engine.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
