"""
Acting-user context handed from the HTTP layer to services.

Services never read ``flask.g`` directly; blueprints pass the Actor
resolved by ``resourcing.auth`` so the same functions run from jobs,
CLI commands and tests.
"""

from dataclasses import dataclass

from resourcing.models.user import UserRole


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole

    @property
    def is_growth_team(self) -> bool:
        return self.role == UserRole.GROWTH_TEAM

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role)
