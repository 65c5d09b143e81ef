"""
Resource Allocation Platform
Flask Application Factory.

Usage:
    from resourcing import create_app
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
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from resourcing.auth import init_auth
from resourcing.blueprints import register_blueprints
from resourcing.blueprints.errors import register_error_handlers
from resourcing.config import config
from resourcing.middleware.logging_config import configure_logging
from resourcing.middleware.rate_limiter import init_rate_limits
from resourcing.middleware.timing import init_request_timing
from resourcing.models import db

logger = logging.getLogger(__name__)


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
    default_limits=[],                     # limits applied per blueprint
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
    app.config.from_object(config[config_name]())

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

    # ── Request timing, then actor resolution ────────────────────────────
    init_request_timing(app)
    init_auth(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from resourcing.models import allocation as _allocation_models      # noqa: F401
    from resourcing.models import hour_change as _hour_change_models    # noqa: F401
    from resourcing.models import notification as _notification_models  # noqa: F401
    from resourcing.models import project as _project_models            # noqa: F401
    from resourcing.models import scheduling as _scheduling_models      # noqa: F401
    from resourcing.models import user as _user_models                  # noqa: F401

    # ── Blueprints & error handlers ──────────────────────────────────────
    register_blueprints(app)
    register_error_handlers(app)

    # ── Scheduler (job functions register on import) ─────────────────────
    from resourcing.services import scheduled_jobs as _scheduled_jobs  # noqa: F401
    from resourcing.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("expire-allocations")
    def expire_allocations_cmd():
        """Expire approved allocations on ended phases with unplanned hours."""
        result = SchedulerService.run_job("expired_allocation_detector")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    @app.cli.command("merge-approved-children")
    def merge_approved_children_cmd():
        """Merge approved child allocations into their parents."""
        result = SchedulerService.run_job("approved_child_merge")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run any registered job by name."""
        result = SchedulerService.run_job(job_name)
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    @app.cli.command("sync-jobs")
    def sync_jobs_cmd():
        """Create ScheduledJob rows for registered jobs."""
        created = SchedulerService.ensure_jobs_registered()
        click.echo(f"Created {len(created)} scheduled job record(s).")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    logger.info("Application created (config=%s)", config_name)
    return app
