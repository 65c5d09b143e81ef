"""
Resource Allocation Platform
User model.

Authentication lives outside this service; a User row carries only the
identity and platform role the allocation workflow needs.
"""

import enum
from datetime import datetime, timezone

from resourcing.models import db


class UserRole(str, enum.Enum):
    """Platform-wide role. Product Manager is a per-project role, see ProjectConsultant."""

    CONSULTANT = "CONSULTANT"
    GROWTH_TEAM = "GROWTH_TEAM"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(
        db.Enum(UserRole, name="user_role", native_enum=False, length=20),
        nullable=False,
        default=UserRole.CONSULTANT,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def display_name(self):
        return self.name or self.email

    @property
    def is_growth_team(self):
        return self.role == UserRole.GROWTH_TEAM

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value if self.role else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
