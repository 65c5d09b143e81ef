"""
Resource Allocation Platform
Scheduler Service.

Lightweight job registry. Jobs are plain functions registered with
``@register_job`` and triggered externally: the cron endpoint, the
``/jobs/<name>/run`` API, or a ``flask`` CLI command. No in-process
timer thread; whatever drives the schedule (platform cron, k8s CronJob)
calls in.

Architecture:
    - register_job: decorator filling the module-level registry
    - SchedulerService: persistence of ScheduledJob rows and execution
    - Every run is recorded on its ScheduledJob row (status, duration, result)
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable

from flask import Flask, current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from resourcing.models import db
from resourcing.models.scheduling import JobRunStatus, ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("expired_allocation_detector")
        def detect_expired_allocations(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


def _job_record(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalar_one_or_none()


class SchedulerService:
    """
    Job registration, persistence and execution.

    Jobs run inside the caller's app context when there is one, otherwise
    inside a fresh context of the app passed to ``init_app``.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    @contextmanager
    def _context(cls):
        if has_app_context():
            yield current_app._get_current_object()
        else:
            with cls._app.app_context():
                yield cls._app

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._context():
            for name, fn in _job_registry.items():
                if _job_record(name) is None:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_config=_get_default_schedule(name),
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result, error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = JobRunStatus.SUCCESS

        with cls._context() as app:
            record = _job_record(job_name)
            if record is not None and not record.is_enabled:
                logger.info("Job %s is disabled, skipping", job_name)
                return {"job_name": job_name, "status": JobRunStatus.SKIPPED, "duration_ms": 0,
                        "result": None, "error": None}

            try:
                result = fn(app)
            except Exception as exc:
                db.session.rollback()
                status = JobRunStatus.FAILED
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc)

            duration_ms = int((time.monotonic() - start) * 1000)

            try:
                record = _job_record(job_name)
                if record is None:
                    record = ScheduledJob(job_name=job_name,
                                          schedule_config=_get_default_schedule(job_name))
                    db.session.add(record)
                record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name)

        logger.info("Job %s finished: %s (%d ms)", job_name, status, duration_ms)
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in sorted(_job_registry):
            record = _job_record(name)
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        record = _job_record(job_name)
        if not record:
            return None
        record.is_enabled = enabled
        db.session.commit()
        return record.to_dict()


def _get_default_schedule(job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "expired_allocation_detector": {"hour": "1", "minute": "0",
                                        "description": "Daily at 01:00"},
        "approved_child_merge": {"hour": "*/6", "minute": "15",
                                 "description": "Every 6 hours"},
        "overdue_approval_alert": {"hour": "9", "minute": "0",
                                   "description": "Daily at 09:00"},
        "phase_end_alert": {"hour": "8", "minute": "0",
                            "description": "Daily at 08:00"},
    }
    return defaults.get(job_name, {"hour": "0", "minute": "0",
                                    "description": "Daily at midnight"})
