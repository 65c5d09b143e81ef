"""
Resource Allocation Platform
Hour change request model.

A side channel for adjusting an allocation's total hours outside weekly
planning.  ``change_type`` says what the requester asked for, while
``request_type`` says how the approval is applied:

    ADJUSTMENT -> INCREASE | DECREASE   (requested_hours on one allocation)
    SHIFT      -> TRANSFER              (shift_hours between two consultants)
"""

import enum
from datetime import datetime, timezone

from resourcing.models import db


class ChangeType(str, enum.Enum):
    ADJUSTMENT = "ADJUSTMENT"
    SHIFT = "SHIFT"


class RequestType(str, enum.Enum):
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    TRANSFER = "TRANSFER"


class ChangeStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


CHANGE_TRANSITIONS = {
    ChangeStatus.PENDING:  frozenset({ChangeStatus.APPROVED, ChangeStatus.REJECTED}),
    ChangeStatus.APPROVED: frozenset(),
    ChangeStatus.REJECTED: frozenset(),
}

REQUEST_TYPES_BY_CHANGE = {
    ChangeType.ADJUSTMENT: frozenset({RequestType.INCREASE, RequestType.DECREASE}),
    ChangeType.SHIFT:      frozenset({RequestType.TRANSFER}),
}


def validate_change_transition(old_status, new_status):
    """Return True if HourChangeRequest status transition is valid."""
    return new_status in CHANGE_TRANSITIONS[old_status]


class HourChangeRequest(db.Model):
    __tablename__ = "hour_change_requests"

    id = db.Column(db.Integer, primary_key=True)
    phase_allocation_id = db.Column(
        db.Integer, db.ForeignKey("phase_allocations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    requester_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    change_type = db.Column(
        db.Enum(ChangeType, name="change_type", native_enum=False, length=20), nullable=False,
    )
    request_type = db.Column(
        db.Enum(RequestType, name="request_type", native_enum=False, length=20), nullable=False,
    )
    original_hours = db.Column(db.Float, nullable=False)
    requested_hours = db.Column(db.Float, nullable=False, default=0)
    from_consultant_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    to_consultant_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    shift_hours = db.Column(db.Float, nullable=True)
    reason = db.Column(db.Text, nullable=False)

    status = db.Column(
        db.Enum(ChangeStatus, name="change_status", native_enum=False, length=20),
        nullable=False,
        default=ChangeStatus.PENDING,
        index=True,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    phase_allocation = db.relationship("PhaseAllocation")
    phase = db.relationship("Phase")
    requester = db.relationship("User", foreign_keys=[requester_id])

    def to_dict(self):
        return {
            "id": self.id,
            "phase_allocation_id": self.phase_allocation_id,
            "phase_id": self.phase_id,
            "requester_id": self.requester_id,
            "change_type": self.change_type.value,
            "request_type": self.request_type.value,
            "original_hours": self.original_hours,
            "requested_hours": self.requested_hours,
            "from_consultant_id": self.from_consultant_id,
            "to_consultant_id": self.to_consultant_id,
            "shift_hours": self.shift_hours,
            "reason": self.reason,
            "status": self.status.value,
            "approver_id": self.approver_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<HourChangeRequest {self.id}: {self.request_type.value} {self.status.value}>"
