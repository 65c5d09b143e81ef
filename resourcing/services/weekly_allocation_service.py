"""
Weekly allocation service: consultant week planning and its approval.

    submit        consultant upserts hours for one ISO week (always back to PENDING)
    decide        Growth Team approves / modifies / rejects one week
    batch_decide  same, for many weeks in one transaction with one
                  consolidated notification per (allocation, consultant)

Approving a week at 0 hours removes the row: a zero-hour week means the
consultant is not working that week, and a zero row would only clutter
planned totals and approval queues.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from resourcing.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from resourcing.models import db
from resourcing.models.allocation import (
    AllocationStatus,
    PhaseAllocation,
    PlanningStatus,
    WeeklyAllocation,
    validate_planning_transition,
)
from resourcing.models.project import Phase
from resourcing.services import hour_ledger
from resourcing.services.helpers.permissions import require_growth_team
from resourcing.services.helpers.scoped_queries import AllocationScope, get_or_404
from resourcing.services.helpers.validation import parse_hours, require_reason
from resourcing.services.notification import Outbox

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "modify", "reject")
BATCH_DEFAULT_ACTIONS = ("approve", "reject")
DECIDABLE_STATUSES = (AllocationStatus.APPROVED, AllocationStatus.DELETION_PENDING)
MIN_PLANNING_YEAR = 2000

# Aggregate status of a consolidated notification; higher wins
_STATUS_PRIORITY = {
    PlanningStatus.APPROVED: 0,
    PlanningStatus.MODIFIED: 1,
    PlanningStatus.REJECTED: 2,
}

_NOTIFICATION_TYPES = {
    PlanningStatus.APPROVED: "WEEKLY_ALLOCATION_APPROVED",
    PlanningStatus.MODIFIED: "WEEKLY_ALLOCATION_MODIFIED",
    PlanningStatus.REJECTED: "WEEKLY_ALLOCATION_REJECTED",
}


def _now():
    return datetime.now(timezone.utc)


def _tolerance() -> float:
    return current_app.config.get("EXPIRY_TOLERANCE_HOURS", 0.01)


def week_of(value) -> tuple[date, int, int]:
    """Normalise a date (or ISO string) to (monday, iso_week, iso_year)."""
    if isinstance(value, datetime):
        value = value.date()
    elif isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            raise ValidationError(
                "week_start must be an ISO date (YYYY-MM-DD)", details={"week_start": "invalid"},
            ) from None
    elif not isinstance(value, date):
        raise ValidationError("week_start is required", details={"week_start": "required"})
    monday = value - timedelta(days=value.weekday())
    iso_year, iso_week, _ = monday.isocalendar()
    if iso_year < MIN_PLANNING_YEAR:
        raise ValidationError(
            f"year must be >= {MIN_PLANNING_YEAR}", details={"week_start": "out_of_range"},
        )
    return monday, iso_week, iso_year


def _parse_action(action, allowed=ACTIONS, field="action") -> str:
    value = (action or "").strip().lower() if isinstance(action, str) else ""
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {list(allowed)}", details={field: "invalid"})
    return value


def _ensure_within_total(alloc: PhaseAllocation, overrides: dict[int, float | None]) -> None:
    """Raise when applying ``overrides`` would plan more than the allocation holds.

    ``overrides`` maps weekly ids to their new hours; None drops the week
    from the committed sum (rejected or removed).
    """
    committed = 0.0
    for week in alloc.weekly_allocations:
        if week.id in overrides:
            hours = overrides[week.id]
            if hours is not None:
                committed += hours
        elif week.planning_status != PlanningStatus.REJECTED:
            committed += week.effective_hours
    if committed > alloc.total_hours + _tolerance():
        raise ValidationError(
            f"planned hours ({committed:g}h) would exceed the allocation total "
            f"({alloc.total_hours:g}h)",
            details={
                "phase_allocation_id": alloc.id,
                "total_hours": alloc.total_hours,
                "planned_hours": committed,
                "overrun_hours": committed - alloc.total_hours,
            },
        )


def _decision_message(week_dict: dict, phase_name: str, status: PlanningStatus | None,
                      reason: str | None = None) -> tuple[str, str]:
    label = f"{phase_name} (Week {week_dict['week_number']}, {week_dict['year']})"
    if status is None:
        return ("Weekly Allocation Removed",
                f"Your weekly allocation for {label} has been approved for removal (0 hours).")
    if status == PlanningStatus.REJECTED:
        return ("Weekly Allocation Rejected",
                f"Your weekly allocation for {label} has been rejected. Reason: {reason}")
    if status == PlanningStatus.MODIFIED:
        return ("Weekly Allocation Modified",
                f"Your weekly allocation for {label} has been modified from "
                f"{(week_dict['proposed_hours'] or 0):g}h to {week_dict['approved_hours']:g}h.")
    return ("Weekly Allocation Approved",
            f"Your weekly allocation for {label} has been approved for {week_dict['approved_hours']:g}h.")


def _week_rows(weeks: list[dict]) -> tuple[str, str]:
    html, text = [], []
    for w in weeks:
        approved = "-" if w["approved_hours"] is None else f"{w['approved_hours']:g}h"
        html.append(
            f"<tr><td style=\"padding: 8px;\">Week {w['week_number']}, {w['year']}</td>"
            f"<td style=\"padding: 8px; text-align: right;\">{(w['proposed_hours'] or 0):g}h</td>"
            f"<td style=\"padding: 8px; text-align: right;\">{approved}</td>"
            f"<td style=\"padding: 8px;\">{w['outcome']}</td></tr>"
        )
        text.append(f"Week {w['week_number']}, {w['year']}: {w['outcome']} ({approved})")
    return "".join(html), "\n".join(text)


# ═════════════════════════════════════════════════════════════════════════════
# Submit
# ═════════════════════════════════════════════════════════════════════════════


def submit(consultant, *, phase_allocation_id: int, week_start, proposed_hours) -> WeeklyAllocation:
    """Create or update the consultant's plan for one week.

    Any edit resets the row to PENDING and clears the previous decision.

    Raises:
        ValidationError: bad hours/date, or the plan would exceed the allocation.
        PermissionDeniedError: allocation belongs to someone else, or the phase is locked.
        ConflictError: allocation is not APPROVED.
    """
    hours = parse_hours(proposed_hours, "proposed_hours")
    monday, week_number, year = week_of(week_start)
    alloc = get_or_404(PhaseAllocation, phase_allocation_id)
    if alloc.consultant_id != consultant.user_id:
        raise PermissionDeniedError("Consultants can only plan their own allocations")
    if alloc.approval_status != AllocationStatus.APPROVED:
        raise ConflictError(
            "PhaseAllocation",
            f"weekly planning requires an approved allocation; {alloc.id} is {alloc.approval_status.value}",
            current_status=alloc.approval_status.value,
        )
    if not alloc.phase.can_edit(consultant.role):
        raise PermissionDeniedError("Phase has ended and is locked for editing")

    week = db.session.execute(
        select(WeeklyAllocation).where(
            WeeklyAllocation.consultant_id == alloc.consultant_id,
            WeeklyAllocation.phase_allocation_id == alloc.id,
            WeeklyAllocation.week_number == week_number,
            WeeklyAllocation.year == year,
        )
    ).scalar_one_or_none()

    if week is None:
        alloc_committed = hour_ledger.committed_hours(alloc.weekly_allocations)
        if alloc_committed + hours > alloc.total_hours + _tolerance():
            raise ValidationError(
                f"planned hours ({alloc_committed + hours:g}h) would exceed the allocation "
                f"total ({alloc.total_hours:g}h)",
                details={
                    "phase_allocation_id": alloc.id,
                    "total_hours": alloc.total_hours,
                    "planned_hours": alloc_committed + hours,
                    "overrun_hours": alloc_committed + hours - alloc.total_hours,
                },
            )
        week = WeeklyAllocation(
            phase_allocation=alloc,
            consultant_id=alloc.consultant_id,
            week_number=week_number,
            year=year,
            week_start_date=monday,
        )
        db.session.add(week)
    else:
        _ensure_within_total(alloc, {week.id: hours})
        if week.planning_status != PlanningStatus.PENDING and not validate_planning_transition(
            week.planning_status, PlanningStatus.PENDING
        ):
            raise ConflictError("WeeklyAllocation", "week cannot be re-submitted",
                                current_status=week.planning_status.value)

    week.proposed_hours = hours
    week.planning_status = PlanningStatus.PENDING
    week.approved_hours = None
    week.approved_by_id = None
    week.approved_at = None
    week.rejection_reason = None
    week.planned_by_id = consultant.user_id
    db.session.commit()
    logger.info(
        "Weekly allocation submitted: W%s/%s %.2fh", week_number, year, hours,
        extra={"weekly_allocation_id": week.id, "allocation_id": alloc.id, "user_id": consultant.user_id},
    )
    return week


# ═════════════════════════════════════════════════════════════════════════════
# Decide
# ═════════════════════════════════════════════════════════════════════════════


class _Decision:
    """Validated decision for one PENDING week, applied later in one go."""

    __slots__ = ("week", "action", "hours", "reason")

    def __init__(self, week, action, hours, reason):
        self.week = week
        self.action = action
        self.hours = hours
        self.reason = reason

    @property
    def removes_row(self) -> bool:
        return self.action != "reject" and self.hours == 0

    @property
    def committed_hours(self):
        if self.action == "reject" or self.removes_row:
            return None
        return self.hours


def _validate_decision(week: WeeklyAllocation, action: str, approved_hours, reason, *,
                       default_to_proposed: bool) -> _Decision:
    if action == "reject":
        return _Decision(week, action, None, require_reason(reason, "rejection_reason"))
    if approved_hours is None and default_to_proposed:
        approved_hours = week.proposed_hours
    hours = parse_hours(approved_hours, "approved_hours")
    return _Decision(week, action, hours, None)


def _require_pending(week: WeeklyAllocation) -> None:
    if week.planning_status != PlanningStatus.PENDING:
        raise ConflictError(
            "WeeklyAllocation",
            f"week {week.id} is not pending approval",
            current_status=week.planning_status.value,
        )
    _require_decidable_allocation(week.phase_allocation)


def _require_decidable_allocation(alloc: PhaseAllocation) -> None:
    # Expired or forfeited allocations have had their unplanned hours recorded
    if alloc.approval_status not in DECIDABLE_STATUSES:
        raise ConflictError(
            "PhaseAllocation",
            f"allocation {alloc.id} is {alloc.approval_status.value.lower()}; "
            f"its weeks can no longer be decided",
            current_status=alloc.approval_status.value,
        )


def _apply(decision: _Decision, approver) -> tuple[PlanningStatus | None, dict]:
    """Mutate the row; returns (final status or None when removed, snapshot)."""
    week = decision.week
    snapshot = week.to_dict()
    if decision.action == "reject":
        week.planning_status = PlanningStatus.REJECTED
        week.approved_hours = None
        week.rejection_reason = decision.reason
        week.approved_by_id = approver.user_id
        week.approved_at = _now()
        snapshot.update(planning_status=week.planning_status.value, approved_hours=None,
                        outcome="Rejected")
        return PlanningStatus.REJECTED, snapshot

    if decision.removes_row:
        db.session.delete(week)
        snapshot.update(approved_hours=0.0, outcome="Removed")
        return None, snapshot

    status = (PlanningStatus.MODIFIED if decision.hours != week.proposed_hours
              else PlanningStatus.APPROVED)
    week.planning_status = status
    week.approved_hours = decision.hours
    week.rejection_reason = None
    week.approved_by_id = approver.user_id
    week.approved_at = _now()
    snapshot.update(planning_status=status.value, approved_hours=decision.hours,
                    outcome=status.value.capitalize())
    return status, snapshot


def decide(weekly_id: int, approver, action, approved_hours=None, rejection_reason=None) -> dict:
    """Approve, modify or reject one PENDING week.

    ``approve`` without hours takes the proposal; ``modify`` needs
    ``approved_hours``.  Zero approved hours removes the row; the consultant
    is still notified.

    Returns:
        {"deleted": bool, "status": str | None, "weekly_allocation": dict}
    """
    require_growth_team(approver, "decide weekly allocations")
    action = _parse_action(action)
    week = get_or_404(WeeklyAllocation, weekly_id)
    decision = _validate_decision(week, action, approved_hours, rejection_reason,
                                  default_to_proposed=(action == "approve"))
    _require_pending(week)
    alloc = week.phase_allocation
    if decision.committed_hours is not None:
        _ensure_within_total(alloc, {week.id: decision.committed_hours})

    consultant = week.consultant
    phase_name = alloc.phase.name
    status, snapshot = _apply(decision, approver)
    title, message = _decision_message(snapshot, phase_name, status, decision.reason)
    notif_type = _NOTIFICATION_TYPES[status] if status else "WEEKLY_ALLOCATION_REMOVED"

    week_html, week_text = _week_rows([snapshot])
    outbox = Outbox()
    outbox.notify(
        [snapshot["consultant_id"]],
        type=notif_type,
        title=title,
        message=message,
        action_url="/weekly-planner",
        metadata={
            "weekly_allocation_id": snapshot["id"],
            "phase_allocation_id": snapshot["phase_allocation_id"],
            "week_number": snapshot["week_number"],
            "year": snapshot["year"],
            "approved_hours": snapshot["approved_hours"],
            "deleted": status is None,
        },
    )
    outbox.email(
        consultant,
        template_name="weekly_allocation_decision",
        context={
            "consultant_name": consultant.display_name if consultant else "",
            "phase_name": phase_name,
            "status_label": (status.value if status else "REMOVED").lower(),
            "summary": message,
            "week_rows": week_html,
            "week_lines": week_text,
        },
    )
    db.session.commit()
    logger.info(
        "Weekly allocation %s", "removed" if status is None else status.value.lower(),
        extra={"weekly_allocation_id": snapshot["id"], "user_id": approver.user_id},
    )
    outbox.flush()
    return {
        "deleted": status is None,
        "status": status.value if status else None,
        "weekly_allocation": snapshot,
    }


def batch_decide(items, default_action, approver) -> dict:
    """Decide many PENDING weeks atomically.

    Every item is validated before anything is written: an unknown id, a
    week that is no longer PENDING, an invalid action/hours/reason, or a
    plan that would overrun its allocation rejects the whole batch.

    Each item: ``{"id", "action"?, "approved_hours"?, "rejection_reason"?}``;
    missing action falls back to ``default_action`` and missing hours to
    the proposal.  One notification and one email go out per
    (phase allocation, consultant) group, with the group's status taken as
    REJECTED over MODIFIED over APPROVED.

    Returns:
        Counts per outcome plus the number of groups notified.
    """
    require_growth_team(approver, "decide weekly allocations")
    default_action = _parse_action(default_action, BATCH_DEFAULT_ACTIONS, field="default_action")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})

    parsed = []
    seen = set()
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("id"), int) or isinstance(item.get("id"), bool):
            raise ValidationError(f"items[{idx}].id must be an integer", details={f"items[{idx}].id": "invalid"})
        if item["id"] in seen:
            raise ValidationError(f"duplicate weekly allocation id {item['id']}",
                                  details={f"items[{idx}].id": "duplicate"})
        seen.add(item["id"])
        action = _parse_action(item.get("action") or default_action, field=f"items[{idx}].action")
        parsed.append((item, action))

    weeks = {
        w.id: w for w in db.session.execute(
            select(WeeklyAllocation).where(WeeklyAllocation.id.in_(sorted(seen)))
        ).scalars()
    }
    missing = sorted(seen - set(weeks))
    if missing:
        raise NotFoundError("WeeklyAllocation", resource_id=",".join(str(i) for i in missing))
    not_pending = sorted(w.id for w in weeks.values() if w.planning_status != PlanningStatus.PENDING)
    if not_pending:
        raise ConflictError(
            "WeeklyAllocation",
            f"weeks {not_pending} are no longer pending approval; no decisions were applied",
        )
    for alloc_id in sorted({w.phase_allocation_id for w in weeks.values()}):
        _require_decidable_allocation(db.session.get(PhaseAllocation, alloc_id))

    decisions = []
    for item, action in parsed:
        week = weeks[item["id"]]
        decisions.append(_validate_decision(
            week, action, item.get("approved_hours"),
            item.get("rejection_reason") or item.get("reason"),
            default_to_proposed=True,
        ))

    overrides_by_alloc: dict[int, dict[int, float | None]] = {}
    for d in decisions:
        overrides_by_alloc.setdefault(d.week.phase_allocation_id, {})[d.week.id] = d.committed_hours
    for alloc_id, overrides in overrides_by_alloc.items():
        _ensure_within_total(db.session.get(PhaseAllocation, alloc_id), overrides)

    # ── all checks passed: apply in one transaction ───────────────────────
    counts = {"processed": 0, "approved": 0, "modified": 0, "rejected": 0, "deleted": 0}
    groups: OrderedDict[tuple[int, int], dict] = OrderedDict()
    for d in decisions:
        alloc = d.week.phase_allocation
        key = (alloc.id, d.week.consultant_id)
        group = groups.setdefault(key, {
            "consultant": d.week.consultant,
            "phase_name": alloc.phase.name,
            "weeks": [],
            "status": PlanningStatus.APPROVED,
        })
        status, snapshot = _apply(d, approver)
        counts["processed"] += 1
        if status is None:
            counts["deleted"] += 1
            effective = PlanningStatus.MODIFIED
        else:
            counts[status.value.lower()] += 1
            effective = status
        if _STATUS_PRIORITY[effective] > _STATUS_PRIORITY[group["status"]]:
            group["status"] = effective
        group["weeks"].append(snapshot)

    outbox = Outbox()
    for (alloc_id, consultant_id), group in groups.items():
        status = group["status"]
        label = status.value.lower()
        n = len(group["weeks"])
        summary = (f"Your weekly plan for {group['phase_name']} ({n} week{'s' if n != 1 else ''}) "
                   f"has been {label}.")
        week_html, week_text = _week_rows(group["weeks"])
        outbox.notify(
            [consultant_id],
            type=_NOTIFICATION_TYPES[status],
            title=f"Weekly Plan {status.value.capitalize()}",
            message=summary,
            action_url="/weekly-planner",
            metadata={
                "phase_allocation_id": alloc_id,
                "weekly_allocation_ids": [w["id"] for w in group["weeks"]],
                "aggregate_status": status.value,
            },
        )
        consultant = group["consultant"]
        outbox.email(
            consultant,
            template_name="weekly_allocation_decision",
            context={
                "consultant_name": consultant.display_name if consultant else "",
                "phase_name": group["phase_name"],
                "status_label": label,
                "summary": summary,
                "week_rows": week_html,
                "week_lines": week_text,
            },
        )

    db.session.commit()
    logger.info(
        "Batch weekly decision: %s", counts,
        extra={"user_id": approver.user_id},
    )
    outbox.flush()
    counts["groups"] = len(groups)
    return counts


def list_pending(actor, phase_allocation_id: int | None = None) -> list[WeeklyAllocation]:
    """PENDING weeks visible to ``actor``, oldest week first."""
    scope = AllocationScope.for_actor(actor)
    stmt = (
        select(WeeklyAllocation)
        .join(PhaseAllocation, WeeklyAllocation.phase_allocation_id == PhaseAllocation.id)
        .join(Phase, PhaseAllocation.phase_id == Phase.id)
        .where(WeeklyAllocation.planning_status == PlanningStatus.PENDING,
               PhaseAllocation.approval_status.in_(DECIDABLE_STATUSES))
    )
    stmt = scope.apply(stmt, WeeklyAllocation.consultant_id, Phase.project_id)
    if phase_allocation_id is not None:
        stmt = stmt.where(WeeklyAllocation.phase_allocation_id == phase_allocation_id)
    stmt = stmt.order_by(WeeklyAllocation.year, WeeklyAllocation.week_number, WeeklyAllocation.id)
    return db.session.execute(stmt).scalars().all()
