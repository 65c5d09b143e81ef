"""
Resource Allocation Platform
Project domain models.

Models:
    - Project: budgeted engagement with one Product Manager
    - ProjectConsultant: project membership (PRODUCT_MANAGER | TEAM_MEMBER)
    - Phase: slice of a project; dates derived from its sprints
    - Sprint: dated iteration, optionally assigned to a phase
"""

import enum
from datetime import date, datetime, timezone

from resourcing.models import db
from resourcing.models.user import UserRole


class ProjectRole(str, enum.Enum):
    PRODUCT_MANAGER = "PRODUCT_MANAGER"
    TEAM_MEMBER = "TEAM_MEMBER"


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    budgeted_hours = db.Column(db.Float, nullable=False, default=0)
    product_manager_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    product_manager = db.relationship("User", foreign_keys=[product_manager_id])
    phases = db.relationship(
        "Phase", back_populates="project", cascade="all, delete-orphan",
        order_by="Phase.id",
    )
    members = db.relationship(
        "ProjectConsultant", back_populates="project", cascade="all, delete-orphan",
    )

    def is_product_manager(self, user_id):
        if user_id is None:
            return False
        if self.product_manager_id == user_id:
            return True
        return any(
            m.user_id == user_id and m.role == ProjectRole.PRODUCT_MANAGER
            for m in self.members
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "budgeted_hours": self.budgeted_hours,
            "product_manager_id": self.product_manager_id,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.title[:40]}>"


class ProjectConsultant(db.Model):
    __tablename__ = "project_consultants"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_consultant"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(
        db.Enum(ProjectRole, name="project_role", native_enum=False, length=20),
        nullable=False,
        default=ProjectRole.TEAM_MEMBER,
    )

    project = db.relationship("Project", back_populates="members")
    user = db.relationship("User")


class Phase(db.Model):
    """
    A phase of a project.

    ``start_date``/``end_date`` mirror the earliest/latest sprint assigned to
    the phase; call ``recompute_dates()`` after changing sprint assignment.
    """

    __tablename__ = "phases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True, index=True)

    project = db.relationship("Project", back_populates="phases")
    sprints = db.relationship("Sprint", back_populates="phase", order_by="Sprint.start_date")
    allocations = db.relationship(
        "PhaseAllocation", back_populates="phase", cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def recompute_dates(self):
        if not self.sprints:
            self.start_date = None
            self.end_date = None
            return
        self.start_date = min(s.start_date for s in self.sprints)
        self.end_date = max(s.end_date for s in self.sprints)

    def has_ended(self, today=None):
        today = today or date.today()
        return self.end_date is not None and self.end_date < today

    def is_locked(self, today=None):
        """A phase is locked once its end date has passed."""
        return self.has_ended(today)

    def can_edit(self, role, today=None):
        """Growth Team may always edit; everyone else only until the phase ends."""
        if role == UserRole.GROWTH_TEAM:
            return True
        return not self.is_locked(today)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<Phase {self.id}: {self.name[:40]}>"


class Sprint(db.Model):
    __tablename__ = "sprints"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    sprint_number = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    phase = db.relationship("Phase", back_populates="sprints")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "sprint_number": self.sprint_number,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }
