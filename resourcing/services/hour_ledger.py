"""
Hour ledger: pure bookkeeping over an allocation and its weekly rows.

No database access: every function takes the allocation total and an
iterable of WeeklyAllocation-like objects (``planning_status``,
``proposed_hours``, ``approved_hours``), so the same arithmetic serves
services, scheduled jobs and tests.

    planned    hours locked in by approval (APPROVED / MODIFIED weeks)
    committed  every non-rejected week, pending proposals included
    unplanned  total - planned, never negative
    overrun    committed - total, never negative (soft invariant breach)
"""

from __future__ import annotations

from typing import Iterable

from resourcing.models.allocation import PLANNED_STATUSES, PlanningStatus


def _hours(week) -> float:
    if week.approved_hours is not None:
        return week.approved_hours
    return week.proposed_hours or 0


def planned_hours(weeks: Iterable) -> float:
    return sum(_hours(w) for w in weeks if w.planning_status in PLANNED_STATUSES)


def committed_hours(weeks: Iterable) -> float:
    return sum(_hours(w) for w in weeks if w.planning_status != PlanningStatus.REJECTED)


def unplanned_hours(total_hours: float, weeks: Iterable) -> float:
    return max(0.0, (total_hours or 0) - planned_hours(weeks))


def overrun_hours(total_hours: float, weeks: Iterable) -> float:
    return max(0.0, committed_hours(weeks) - (total_hours or 0))


def has_unplanned(total_hours: float, weeks: Iterable, tolerance: float = 0.01) -> bool:
    """True when the unplanned remainder exceeds float noise."""
    return unplanned_hours(total_hours, weeks) > tolerance


def ledger_summary(total_hours: float, weeks: Iterable) -> dict:
    weeks = list(weeks)
    return {
        "total_hours": total_hours,
        "planned_hours": planned_hours(weeks),
        "committed_hours": committed_hours(weeks),
        "unplanned_hours": unplanned_hours(total_hours, weeks),
        "overrun_hours": overrun_hours(total_hours, weeks),
    }
