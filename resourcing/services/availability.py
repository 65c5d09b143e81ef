"""
Availability / workload aggregation.

The bucketing and averaging are pure functions over weekly rows so the
single-consultant view, the roster view and the tests share one
implementation; the ``*_availability`` wrappers only load rows.

Week buckets (hours planned in the week):

    <= 15   available
    <= 30   partially-busy
    <= 40   busy
    >  40   overloaded
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from flask import current_app
from sqlalchemy import select

from resourcing.models import db
from resourcing.models.allocation import PhaseAllocation, PlanningStatus, WeeklyAllocation
from resourcing.models.project import Phase, Project
from resourcing.models.user import User, UserRole
from resourcing.services.helpers.scoped_queries import get_or_404

logger = logging.getLogger(__name__)

COUNTED_STATUSES = frozenset({PlanningStatus.APPROVED, PlanningStatus.PENDING, PlanningStatus.MODIFIED})

_BUCKETS = (
    (15, "available"),
    (30, "partially-busy"),
    (40, "busy"),
)


def week_status(hours: float) -> str:
    for limit, label in _BUCKETS:
        if hours <= limit:
            return label
    return "overloaded"


def week_window(start: date, count: int) -> list[tuple[int, int]]:
    """``count`` consecutive (iso_year, iso_week) keys from the week containing ``start``."""
    monday = start - timedelta(days=start.weekday())
    keys = []
    for i in range(count):
        iso_year, iso_week, _ = (monday + timedelta(weeks=i)).isocalendar()
        keys.append((iso_year, iso_week))
    return keys


def _row_hours(row) -> float:
    if row.approved_hours is not None:
        return row.approved_hours
    if row.proposed_hours is not None:
        return row.proposed_hours
    return 0.0


def weekly_totals(weeks: Iterable[tuple[int, int]], rows: Iterable) -> dict[tuple[int, int], float]:
    """Sum counted hours per (year, week) for the requested weeks only."""
    totals = {key: 0.0 for key in weeks}
    for row in rows:
        key = (row.year, row.week_number)
        if key in totals and row.planning_status in COUNTED_STATUSES:
            totals[key] += _row_hours(row)
    return totals


def summarize(weeks: Iterable[tuple[int, int]], rows: Iterable, capacity: float = 40.0) -> dict:
    """Deterministic workload summary for one consultant over ``weeks``."""
    weeks = list(weeks)
    totals = weekly_totals(weeks, rows)
    per_week = [
        {"year": y, "week_number": w, "hours": totals[(y, w)], "status": week_status(totals[(y, w)])}
        for (y, w) in weeks
    ]
    average = sum(totals.values()) / len(weeks) if weeks else 0.0
    return {
        "weeks": per_week,
        "average_hours": round(average, 2),
        "overall_status": week_status(average),
        "available_hours_per_week": round(max(0.0, capacity - average), 2),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Loaders
# ═════════════════════════════════════════════════════════════════════════════


def _load_rows(consultant_ids, weeks):
    years = sorted({y for y, _ in weeks})
    stmt = (
        select(WeeklyAllocation, Project.id, Project.title)
        .join(PhaseAllocation, WeeklyAllocation.phase_allocation_id == PhaseAllocation.id)
        .join(Phase, PhaseAllocation.phase_id == Phase.id)
        .join(Project, Phase.project_id == Project.id)
        .where(
            WeeklyAllocation.consultant_id.in_(consultant_ids),
            WeeklyAllocation.year.in_(years),
            WeeklyAllocation.planning_status.in_(COUNTED_STATUSES),
        )
    )
    return db.session.execute(stmt).all()


def _project_totals(rows, weeks) -> list[dict]:
    wanted = set(weeks)
    totals: dict[int, dict] = {}
    for week, project_id, title in rows:
        if (week.year, week.week_number) not in wanted:
            continue
        entry = totals.setdefault(project_id, {"project_id": project_id, "title": title, "hours": 0.0})
        entry["hours"] += _row_hours(week)
    return sorted(totals.values(), key=lambda e: (-e["hours"], e["project_id"]))


def _build(user, rows, weeks, capacity):
    summary = summarize(weeks, [r[0] for r in rows], capacity)
    summary["consultant"] = user.to_dict()
    summary["projects"] = _project_totals(rows, weeks)
    return summary


def consultant_availability(consultant_id: int, start: date | None = None, weeks: int = 4) -> dict:
    user = get_or_404(User, consultant_id)
    window = week_window(start or date.today(), weeks)
    capacity = current_app.config.get("WEEKLY_CAPACITY_HOURS", 40.0)
    return _build(user, _load_rows([user.id], window), window, capacity)


def roster_availability(start: date | None = None, weeks: int = 4) -> list[dict]:
    """Availability of every consultant, least loaded first."""
    window = week_window(start or date.today(), weeks)
    capacity = current_app.config.get("WEEKLY_CAPACITY_HOURS", 40.0)
    users = db.session.execute(
        select(User).where(User.role == UserRole.CONSULTANT).order_by(User.id)
    ).scalars().all()
    if not users:
        return []
    by_user: dict[int, list] = {u.id: [] for u in users}
    for row in _load_rows(list(by_user), window):
        by_user[row[0].consultant_id].append(row)
    roster = [_build(u, by_user[u.id], window, capacity) for u in users]
    roster.sort(key=lambda s: (s["average_hours"], s["consultant"]["id"]))
    return roster
