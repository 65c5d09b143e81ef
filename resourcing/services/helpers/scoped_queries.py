"""
Role-scoped query helpers.

Every list endpoint narrows its rows through an ``AllocationScope`` built
from the acting user instead of assembling ad-hoc filter dicts:

    Growth Team       every row
    Product Manager   rows on projects they manage, plus their own
    Consultant        their own rows only

Usage:
    scope = AllocationScope.for_actor(actor)
    stmt = select(PhaseAllocation).join(Phase)
    stmt = scope.apply(stmt, PhaseAllocation.consultant_id, Phase.project_id)

    alloc = get_or_404(PhaseAllocation, allocation_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import false, or_, select, true

from resourcing.core.exceptions import NotFoundError
from resourcing.models import db
from resourcing.models.project import Project, ProjectConsultant, ProjectRole

logger = logging.getLogger(__name__)


def managed_project_ids(user_id: int) -> frozenset[int]:
    """Projects where the user is the Product Manager (owner column or membership role)."""
    owned = select(Project.id).where(Project.product_manager_id == user_id)
    member = select(ProjectConsultant.project_id).where(
        ProjectConsultant.user_id == user_id,
        ProjectConsultant.role == ProjectRole.PRODUCT_MANAGER,
    )
    ids = set(db.session.execute(owned).scalars()) | set(db.session.execute(member).scalars())
    return frozenset(ids)


@dataclass(frozen=True)
class AllocationScope:
    """Typed row filter for one acting user."""

    unrestricted: bool = False
    consultant_id: int | None = None
    project_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def for_actor(cls, actor) -> "AllocationScope":
        if actor.is_growth_team:
            return cls(unrestricted=True)
        return cls(consultant_id=actor.user_id, project_ids=managed_project_ids(actor.user_id))

    @property
    def is_product_manager(self) -> bool:
        return bool(self.project_ids)

    def predicate(self, consultant_col, project_col):
        """SQL expression selecting the rows this scope may see."""
        if self.unrestricted:
            return true()
        clauses = []
        if self.consultant_id is not None:
            clauses.append(consultant_col == self.consultant_id)
        if self.project_ids:
            clauses.append(project_col.in_(sorted(self.project_ids)))
        if not clauses:
            return false()
        return or_(*clauses)

    def apply(self, stmt, consultant_col, project_col):
        if self.unrestricted:
            return stmt
        return stmt.where(self.predicate(consultant_col, project_col))

    def allows(self, consultant_id: int, project_id: int) -> bool:
        if self.unrestricted:
            return True
        return consultant_id == self.consultant_id or project_id in self.project_ids


def get_or_404(model, pk, resource: str | None = None):
    """Fetch a row by PK or raise NotFoundError."""
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(resource=resource or model.__name__, resource_id=pk)
    return obj
