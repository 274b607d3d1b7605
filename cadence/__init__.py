"""
Cadence Engine
Flask Application Factory.

The engine is consumed as a library: services are plain functions that run
inside an application context. The factory wires configuration, logging,
the SQLAlchemy session and the scheduler registry.

Usage:
    from cadence import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config

    with app.app_context():
        from cadence.services import escalation
        escalation.escalate(organization_id, issue_id, acting_user_id)
"""

import logging
import os

from flask import Flask
from flask_migrate import Migrate

from cadence.config import config
from cadence.models import db
from cadence.middleware.logging_config import configure_logging

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
    config_obj = config[config_name]
    app.config.from_object(config_obj() if config_name == "production" else config_obj)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so Alembic can detect them ─────────────────────
    from cadence.models import organization as _organization_models  # noqa: F401
    from cadence.models import objective as _objective_models        # noqa: F401
    from cadence.models import metric as _metric_models              # noqa: F401
    from cadence.models import meeting as _meeting_models            # noqa: F401
    from cadence.models import event as _event_models                # noqa: F401
    from cadence.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("AUTO_CREATE_TABLES", False):
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("generate-agendas")
    def generate_agendas_cmd():
        """Snapshot agendas for meetings starting inside the lookahead window."""
        from cadence.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job("upcoming_agenda_generation")
        logger.info(
            "Agenda generation finished: status=%s result=%s",
            outcome["status"], outcome.get("result"),
        )

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("cadence.services.scheduled_jobs")  # registers @register_job handlers
    from cadence.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
