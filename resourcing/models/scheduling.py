"""
Job bookkeeping and outbound mail audit.

    - ScheduledJob: one row per registered sweep (expiry, merge, alerts)
      holding its enabled flag and the outcome of the latest run
    - EmailLog: every decision / expiry email, sent or not
"""

from datetime import datetime, timezone

from resourcing.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class JobRunStatus:
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class EmailStatus:
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class ScheduledJob(db.Model):
    """Persistent state of a registered job.

    Rows are created lazily (first run, first toggle, or ``flask
    sync-jobs``); a job without a row is treated as enabled.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default="")
    schedule_config = db.Column(db.JSON, default=dict)  # cron-style hints for the external scheduler
    is_enabled = db.Column(db.Boolean, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def record_run(self, *, status=JobRunStatus.SUCCESS, duration_ms=0, result=None, error=None):
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == JobRunStatus.FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    @property
    def last_run_failed(self) -> bool:
        return self.last_run_status == JobRunStatus.FAILED

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": self.schedule_config,
            "is_enabled": self.is_enabled,
            "last_run_at": _iso(self.last_run_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "last_run_failed": self.last_run_failed,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} enabled={self.is_enabled}>"


class EmailLog(db.Model):
    """One outbound email; ``status`` ends as ``sent`` or ``failed``."""

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default=EmailStatus.QUEUED)
    error_message = db.Column(db.Text, nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def mark_sent(self):
        self.status = EmailStatus.SENT
        self.sent_at = _utcnow()

    def mark_failed(self, error):
        self.status = EmailStatus.FAILED
        self.error_message = str(error)[:1000]

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.template_name} -> {self.recipient_email} {self.status}>"
