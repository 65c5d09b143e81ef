"""
Resource Allocation Platform
Notification model.

Models:
    - Notification: in-app notification record with read tracking.
      Informational only; never consulted to decide workflow state.
"""

from datetime import datetime, timezone

from resourcing.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "PHASE_ALLOCATION_PENDING",
    "PHASE_ALLOCATION_APPROVED",
    "PHASE_ALLOCATION_REJECTED",
    "PHASE_ALLOCATION_DELETION_REQUESTED",
    "PHASE_ALLOCATION_DELETED",
    "PHASE_ALLOCATION_EXPIRED",
    "PHASE_ALLOCATION_FORFEITED",
    "PHASE_ALLOCATION_REALLOCATED",
    "WEEKLY_ALLOCATION_APPROVED",
    "WEEKLY_ALLOCATION_MODIFIED",
    "WEEKLY_ALLOCATION_REJECTED",
    "WEEKLY_ALLOCATION_REMOVED",
    "HOUR_CHANGE_REQUESTED",
    "HOUR_CHANGE_APPROVED",
    "HOUR_CHANGE_REJECTED",
    "APPROVAL_OVERDUE",
    "PHASE_ENDING_SOON",
    "SYSTEM",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(50), nullable=False, default="SYSTEM")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    action_url = db.Column(db.String(500), nullable=True)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "action_url": self.action_url,
            "metadata": self.meta or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
