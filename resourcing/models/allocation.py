"""
Resource Allocation Platform
Allocation domain models.

Models:
    - PhaseAllocation: one consultant's hour budget for one phase
    - WeeklyAllocation: one consultant's planned hours for one ISO week
    - UnplannedExpiredHours: remainder left on an allocation when its phase ended

Status lifecycles:

    PhaseAllocation   PENDING -> APPROVED | REJECTED
                      APPROVED -> DELETION_PENDING | EXPIRED
                      DELETION_PENDING -> APPROVED  (or the row is removed)
                      EXPIRED -> FORFEITED          (reallocation keeps EXPIRED)

    WeeklyAllocation  PENDING -> APPROVED | MODIFIED | REJECTED
                      APPROVED | MODIFIED | REJECTED -> PENDING  (re-submission)

    UnplannedExpiredHours  UNPLANNED -> REALLOCATED | FORFEITED
"""

import enum
from datetime import datetime, timezone

from resourcing.models import db


class AllocationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DELETION_PENDING = "DELETION_PENDING"
    EXPIRED = "EXPIRED"
    FORFEITED = "FORFEITED"


class PlanningStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    MODIFIED = "MODIFIED"
    REJECTED = "REJECTED"


class UnplannedStatus(str, enum.Enum):
    UNPLANNED = "UNPLANNED"
    REALLOCATED = "REALLOCATED"
    FORFEITED = "FORFEITED"


# Every member is a key; an empty set marks a terminal state.
ALLOCATION_TRANSITIONS = {
    AllocationStatus.PENDING:          frozenset({AllocationStatus.APPROVED, AllocationStatus.REJECTED}),
    AllocationStatus.APPROVED:         frozenset({AllocationStatus.DELETION_PENDING, AllocationStatus.EXPIRED}),
    AllocationStatus.DELETION_PENDING: frozenset({AllocationStatus.APPROVED}),
    AllocationStatus.EXPIRED:          frozenset({AllocationStatus.FORFEITED}),
    AllocationStatus.REJECTED:         frozenset(),
    AllocationStatus.FORFEITED:        frozenset(),
}

PLANNING_TRANSITIONS = {
    PlanningStatus.PENDING:  frozenset({PlanningStatus.APPROVED, PlanningStatus.MODIFIED, PlanningStatus.REJECTED}),
    PlanningStatus.APPROVED: frozenset({PlanningStatus.PENDING}),
    PlanningStatus.MODIFIED: frozenset({PlanningStatus.PENDING}),
    PlanningStatus.REJECTED: frozenset({PlanningStatus.PENDING}),
}

UNPLANNED_TRANSITIONS = {
    UnplannedStatus.UNPLANNED:   frozenset({UnplannedStatus.REALLOCATED, UnplannedStatus.FORFEITED}),
    UnplannedStatus.REALLOCATED: frozenset(),
    UnplannedStatus.FORFEITED:   frozenset(),
}

# Weekly rows that count as "planned" when an allocation expires
PLANNED_STATUSES = frozenset({PlanningStatus.APPROVED, PlanningStatus.MODIFIED})


def validate_allocation_transition(old_status, new_status):
    """Return True if PhaseAllocation status transition is valid."""
    return new_status in ALLOCATION_TRANSITIONS[old_status]


def validate_planning_transition(old_status, new_status):
    """Return True if WeeklyAllocation planning status transition is valid."""
    return new_status in PLANNING_TRANSITIONS[old_status]


def validate_unplanned_transition(old_status, new_status):
    """Return True if UnplannedExpiredHours status transition is valid."""
    return new_status in UNPLANNED_TRANSITIONS[old_status]


def _iso(value):
    return value.isoformat() if value else None


class PhaseAllocation(db.Model):
    """
    Hour budget of one consultant on one phase.

    ``parent_allocation_id`` links a reallocated remainder back to the
    expired allocation it came from.  At most one child of a parent may be
    APPROVED at a time; an approved child is folded into its parent by
    ``phase_allocation_service.merge_approved_child``.
    """

    __tablename__ = "phase_allocations"

    id = db.Column(db.Integer, primary_key=True)
    consultant_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    total_hours = db.Column(db.Float, nullable=False, default=0)
    approval_status = db.Column(
        db.Enum(AllocationStatus, name="allocation_status", native_enum=False, length=20),
        nullable=False,
        default=AllocationStatus.PENDING,
        index=True,
    )
    parent_allocation_id = db.Column(
        db.Integer, db.ForeignKey("phase_allocations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    consultant = db.relationship("User", foreign_keys=[consultant_id])
    phase = db.relationship("Phase", back_populates="allocations")
    parent = db.relationship("PhaseAllocation", remote_side=[id], back_populates="children")
    children = db.relationship("PhaseAllocation", back_populates="parent")
    weekly_allocations = db.relationship(
        "WeeklyAllocation", back_populates="phase_allocation",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="[WeeklyAllocation.year, WeeklyAllocation.week_number]",
    )
    unplanned_record = db.relationship(
        "UnplannedExpiredHours", back_populates="phase_allocation", uselist=False,
        foreign_keys="UnplannedExpiredHours.phase_allocation_id",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def project(self):
        return self.phase.project if self.phase else None

    def to_dict(self, include_weeks=False):
        d = {
            "id": self.id,
            "consultant_id": self.consultant_id,
            "phase_id": self.phase_id,
            "project_id": self.phase.project_id if self.phase else None,
            "total_hours": self.total_hours,
            "approval_status": self.approval_status.value,
            "parent_allocation_id": self.parent_allocation_id,
            "created_by_id": self.created_by_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "expired_at": _iso(self.expired_at),
            "created_at": _iso(self.created_at),
        }
        if include_weeks:
            d["weekly_allocations"] = [w.to_dict() for w in self.weekly_allocations]
        return d

    def __repr__(self):
        return f"<PhaseAllocation {self.id}: {self.total_hours}h {self.approval_status.value}>"


class WeeklyAllocation(db.Model):
    """Planned hours for one ISO week; ``approved_hours`` stays NULL until decided."""

    __tablename__ = "weekly_allocations"
    __table_args__ = (
        db.UniqueConstraint(
            "consultant_id", "phase_allocation_id", "week_number", "year",
            name="uq_weekly_allocation_week",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_allocation_id = db.Column(
        db.Integer, db.ForeignKey("phase_allocations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    consultant_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    week_number = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    week_start_date = db.Column(db.Date, nullable=False)
    proposed_hours = db.Column(db.Float, nullable=True)
    approved_hours = db.Column(db.Float, nullable=True)
    planning_status = db.Column(
        db.Enum(PlanningStatus, name="planning_status", native_enum=False, length=20),
        nullable=False,
        default=PlanningStatus.PENDING,
        index=True,
    )
    planned_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    phase_allocation = db.relationship("PhaseAllocation", back_populates="weekly_allocations")
    consultant = db.relationship("User", foreign_keys=[consultant_id])

    @property
    def effective_hours(self):
        """Approved hours when decided, otherwise the consultant's proposal."""
        if self.approved_hours is not None:
            return self.approved_hours
        return self.proposed_hours or 0

    @property
    def week_label(self):
        return f"Week {self.week_number}, {self.year}"

    def to_dict(self):
        return {
            "id": self.id,
            "phase_allocation_id": self.phase_allocation_id,
            "consultant_id": self.consultant_id,
            "week_number": self.week_number,
            "year": self.year,
            "week_start_date": _iso(self.week_start_date),
            "proposed_hours": self.proposed_hours,
            "approved_hours": self.approved_hours,
            "planning_status": self.planning_status.value,
            "planned_by_id": self.planned_by_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
        }

    def __repr__(self):
        return f"<WeeklyAllocation {self.id}: W{self.week_number}/{self.year} {self.planning_status.value}>"


class UnplannedExpiredHours(db.Model):
    """Hours left unplanned when an allocation's phase ended, awaiting PM action."""

    __tablename__ = "unplanned_expired_hours"

    id = db.Column(db.Integer, primary_key=True)
    phase_allocation_id = db.Column(
        db.Integer, db.ForeignKey("phase_allocations.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    consultant_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    unplanned_hours = db.Column(db.Float, nullable=False)
    status = db.Column(
        db.Enum(UnplannedStatus, name="unplanned_status", native_enum=False, length=20),
        nullable=False,
        default=UnplannedStatus.UNPLANNED,
        index=True,
    )
    reallocated_to_phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True,
    )
    reallocated_to_allocation_id = db.Column(
        db.Integer, db.ForeignKey("phase_allocations.id", ondelete="SET NULL"), nullable=True,
    )
    notes = db.Column(db.Text, nullable=True)
    handled_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    handled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    detected_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    phase_allocation = db.relationship(
        "PhaseAllocation", back_populates="unplanned_record", foreign_keys=[phase_allocation_id],
    )

    def to_dict(self):
        return {
            "id": self.id,
            "phase_allocation_id": self.phase_allocation_id,
            "consultant_id": self.consultant_id,
            "phase_id": self.phase_id,
            "unplanned_hours": self.unplanned_hours,
            "status": self.status.value,
            "reallocated_to_phase_id": self.reallocated_to_phase_id,
            "reallocated_to_allocation_id": self.reallocated_to_allocation_id,
            "notes": self.notes,
            "handled_by_id": self.handled_by_id,
            "handled_at": _iso(self.handled_at),
            "detected_at": _iso(self.detected_at),
        }
