"""
Read-side approval views: pending summary, phase-end alerts, phase lock.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import func, select

from resourcing.models import db
from resourcing.models.allocation import AllocationStatus, PhaseAllocation, PlanningStatus, WeeklyAllocation
from resourcing.models.hour_change import ChangeStatus, HourChangeRequest
from resourcing.models.project import Phase
from resourcing.services.helpers.scoped_queries import get_or_404
from resourcing.services.weekly_allocation_service import DECIDABLE_STATUSES

logger = logging.getLogger(__name__)


def pending_summary() -> dict:
    """Counts shown on the Growth Team approvals dashboard."""
    phase_allocations = db.session.execute(
        select(func.count(PhaseAllocation.id)).where(
            PhaseAllocation.approval_status == AllocationStatus.PENDING,
        )
    ).scalar_one()
    deletion_requests = db.session.execute(
        select(func.count(PhaseAllocation.id)).where(
            PhaseAllocation.approval_status == AllocationStatus.DELETION_PENDING,
        )
    ).scalar_one()
    week_pairs = db.session.execute(
        select(WeeklyAllocation.year, WeeklyAllocation.week_number)
        .distinct()
        .join(PhaseAllocation, WeeklyAllocation.phase_allocation_id == PhaseAllocation.id)
        .where(
            WeeklyAllocation.planning_status == PlanningStatus.PENDING,
            PhaseAllocation.approval_status.in_(DECIDABLE_STATUSES),
        )
    ).all()
    hour_changes = db.session.execute(
        select(func.count(HourChangeRequest.id)).where(
            HourChangeRequest.status == ChangeStatus.PENDING,
        )
    ).scalar_one()
    return {
        "phase_allocations": phase_allocations,
        "deletion_requests": deletion_requests,
        "weekly_allocation_weeks": len(week_pairs),
        "hour_changes": hour_changes,
        "total": phase_allocations + deletion_requests + len(week_pairs) + hour_changes,
    }


def phases_ending_soon(today: date | None = None, days: int | None = None) -> dict:
    """Phases ending today, and those ending within the warning window."""
    today = today or date.today()
    if days is None:
        days = current_app.config.get("PHASE_END_WARNING_DAYS", 7)
    horizon = today + timedelta(days=days)
    phases = db.session.execute(
        select(Phase)
        .where(Phase.end_date.is_not(None), Phase.end_date >= today, Phase.end_date <= horizon)
        .order_by(Phase.end_date, Phase.id)
    ).scalars().all()

    def _entry(phase):
        d = phase.to_dict()
        d["project_title"] = phase.project.title
        d["days_remaining"] = (phase.end_date - today).days
        return d

    return {
        "ending_today": [_entry(p) for p in phases if p.end_date == today],
        "ending_soon": [_entry(p) for p in phases if p.end_date > today],
    }


def phase_lock(phase_id: int, actor, today: date | None = None) -> dict:
    phase = get_or_404(Phase, phase_id)
    return {
        "phase_id": phase.id,
        "end_date": phase.end_date.isoformat() if phase.end_date else None,
        "is_locked": phase.is_locked(today),
        "can_edit": phase.can_edit(actor.role, today),
    }
