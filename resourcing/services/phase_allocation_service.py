"""
Phase allocation service: approval state machine and reallocation engine.

Transitions (see ``resourcing.models.allocation``):

    create             -> PENDING                       PM / Growth Team
    approve / reject   PENDING -> APPROVED | REJECTED   Growth Team
    request_deletion   APPROVED -> DELETION_PENDING     PM / Growth Team
    decide_deletion    DELETION_PENDING -> removed | APPROVED
    expire             APPROVED -> EXPIRED              system
    forfeit            EXPIRED -> FORFEITED             PM
    reallocate         EXPIRED stays, new PENDING child PM
    merge_approved_child  child APPROVED -> folded into parent

Every operation validates first, mutates, commits once, then delivers its
notifications through an ``Outbox`` so delivery failures cannot undo the
committed transition.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

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
    UnplannedExpiredHours,
    UnplannedStatus,
    WeeklyAllocation,
    validate_allocation_transition,
    validate_unplanned_transition,
)
from resourcing.models.project import Phase
from resourcing.models.user import User
from resourcing.services import hour_ledger
from resourcing.services.helpers.permissions import require_growth_team, require_product_manager
from resourcing.services.helpers.scoped_queries import AllocationScope, get_or_404
from resourcing.services.helpers.validation import parse_hours, require_reason
from resourcing.services.notification import Outbox, growth_team_ids

logger = logging.getLogger(__name__)

# Statuses in which an allocation still holds hours for its consultant
ACTIVE_STATUSES = (
    AllocationStatus.PENDING,
    AllocationStatus.APPROVED,
    AllocationStatus.DELETION_PENDING,
)


def _now():
    return datetime.now(timezone.utc)


def _tolerance() -> float:
    return current_app.config.get("EXPIRY_TOLERANCE_HOURS", 0.01)


def _transition(alloc: PhaseAllocation, new_status: AllocationStatus) -> None:
    old = alloc.approval_status
    if not validate_allocation_transition(old, new_status):
        raise ConflictError(
            "PhaseAllocation",
            f"cannot move allocation {alloc.id} from {old.value} to {new_status.value}",
            current_status=old.value,
        )
    alloc.approval_status = new_status


def _action_url(alloc: PhaseAllocation) -> str:
    return f"/projects/{alloc.phase.project_id}/phases/{alloc.phase_id}"


def _email_context(alloc: PhaseAllocation, **extra) -> dict:
    consultant = alloc.consultant
    ctx = {
        "consultant_name": consultant.display_name if consultant else "",
        "phase_name": alloc.phase.name,
        "project_title": alloc.phase.project.title,
        "total_hours": f"{alloc.total_hours:g}",
        "reason_line": "",
    }
    ctx.update(extra)
    return ctx


def get_allocation(allocation_id: int) -> PhaseAllocation:
    return get_or_404(PhaseAllocation, allocation_id)


def list_allocations(actor, *, status=None, phase_id=None, project_id=None):
    """Allocations visible to ``actor``, newest first."""
    scope = AllocationScope.for_actor(actor)
    stmt = select(PhaseAllocation).join(Phase, PhaseAllocation.phase_id == Phase.id)
    stmt = scope.apply(stmt, PhaseAllocation.consultant_id, Phase.project_id)
    if status is not None:
        stmt = stmt.where(PhaseAllocation.approval_status == status)
    if phase_id is not None:
        stmt = stmt.where(PhaseAllocation.phase_id == phase_id)
    if project_id is not None:
        stmt = stmt.where(Phase.project_id == project_id)
    stmt = stmt.order_by(PhaseAllocation.created_at.desc(), PhaseAllocation.id.desc())
    return db.session.execute(stmt).scalars().all()


def allocation_ledger(alloc: PhaseAllocation) -> dict:
    return hour_ledger.ledger_summary(alloc.total_hours, alloc.weekly_allocations)


# ═════════════════════════════════════════════════════════════════════════════
# Create / approve / reject
# ═════════════════════════════════════════════════════════════════════════════


def create_allocation(actor, *, consultant_id: int, phase_id: int, total_hours) -> PhaseAllocation:
    """Create a PENDING allocation for a consultant on a phase.

    Args:
        actor: Product Manager of the phase's project, or Growth Team.
        consultant_id: User receiving the hours.
        phase_id: Target phase.
        total_hours: Hour budget, must be > 0.

    Returns:
        The created PhaseAllocation.

    Raises:
        ValidationError: non-positive hours.
        NotFoundError: unknown phase or consultant.
        PermissionDeniedError: actor is neither PM nor Growth Team, or the
            phase is locked for the actor.
        ConflictError: consultant already holds an active allocation on the phase.
    """
    hours = parse_hours(total_hours, "total_hours", allow_zero=False)
    phase = get_or_404(Phase, phase_id)
    consultant = get_or_404(User, consultant_id)
    require_product_manager(actor, phase.project, "allocate hours", allow_growth_team=True)
    if not phase.can_edit(actor.role):
        raise PermissionDeniedError("Phase has ended and is locked for editing")

    existing = db.session.execute(
        select(PhaseAllocation.id).where(
            PhaseAllocation.phase_id == phase.id,
            PhaseAllocation.consultant_id == consultant.id,
            PhaseAllocation.parent_allocation_id.is_(None),
            PhaseAllocation.approval_status.in_(ACTIVE_STATUSES),
        )
    ).first()
    if existing:
        raise ConflictError(
            "PhaseAllocation",
            f"consultant {consultant.id} already has an active allocation on phase {phase.id}",
        )

    alloc = PhaseAllocation(
        consultant_id=consultant.id,
        phase_id=phase.id,
        total_hours=hours,
        approval_status=AllocationStatus.PENDING,
        created_by_id=actor.user_id,
    )
    db.session.add(alloc)
    db.session.flush()

    outbox = Outbox()
    outbox.notify(
        growth_team_ids(),
        type="PHASE_ALLOCATION_PENDING",
        title="Phase allocation awaiting approval",
        message=f"{hours:g}h for {consultant.display_name} on {phase.name} "
                f"({phase.project.title}) needs approval.",
        action_url="/approvals",
        metadata={"allocation_id": alloc.id, "phase_id": phase.id},
    )
    db.session.commit()
    logger.info(
        "Phase allocation created",
        extra={"allocation_id": alloc.id, "phase_id": phase.id, "user_id": actor.user_id},
    )
    outbox.flush()
    return alloc


def approve(allocation_id: int, approver, modified_hours=None) -> PhaseAllocation:
    """Approve a PENDING allocation, optionally with a different total.

    Args:
        allocation_id: Allocation to approve.
        approver: Growth Team actor.
        modified_hours: When given (> 0), replaces ``total_hours`` on approval.

    Raises:
        ConflictError: allocation not PENDING, or it is a reallocated child
            whose parent already has another APPROVED child.
    """
    require_growth_team(approver, "approve phase allocations")
    new_total = None
    if modified_hours is not None:
        new_total = parse_hours(modified_hours, "modified_hours", allow_zero=False)

    alloc = get_allocation(allocation_id)
    if alloc.parent_allocation_id is not None:
        sibling = db.session.execute(
            select(PhaseAllocation.id).where(
                PhaseAllocation.parent_allocation_id == alloc.parent_allocation_id,
                PhaseAllocation.id != alloc.id,
                PhaseAllocation.approval_status == AllocationStatus.APPROVED,
            )
        ).first()
        if sibling:
            raise ConflictError(
                "PhaseAllocation",
                f"parent allocation {alloc.parent_allocation_id} already has an approved child "
                f"({sibling.id}); merge it before approving another",
                current_status=alloc.approval_status.value,
            )

    _transition(alloc, AllocationStatus.APPROVED)
    original_hours = alloc.total_hours
    if new_total is not None:
        alloc.total_hours = new_total
    alloc.approved_by_id = approver.user_id
    alloc.approved_at = _now()
    alloc.rejection_reason = None

    if new_total is not None and new_total != original_hours:
        message = (f"Your allocation for {alloc.phase.name} was approved with "
                   f"{new_total:g}h (requested {original_hours:g}h).")
    else:
        message = f"Your allocation of {alloc.total_hours:g}h for {alloc.phase.name} was approved."

    outbox = Outbox()
    outbox.notify(
        [alloc.consultant_id, alloc.phase.project.product_manager_id],
        type="PHASE_ALLOCATION_APPROVED",
        title="Phase allocation approved",
        message=message,
        action_url=_action_url(alloc),
        metadata={"allocation_id": alloc.id, "total_hours": alloc.total_hours,
                  "original_hours": original_hours},
    )
    outbox.email(
        alloc.consultant,
        template_name="phase_allocation_decision",
        context=_email_context(alloc, status_label="approved"),
    )
    db.session.commit()
    logger.info(
        "Phase allocation approved",
        extra={"allocation_id": alloc.id, "user_id": approver.user_id},
    )
    outbox.flush()
    return alloc


def reject(allocation_id: int, approver, reason) -> PhaseAllocation:
    """Reject a PENDING allocation. ``reason`` is mandatory."""
    require_growth_team(approver, "reject phase allocations")
    reason = require_reason(reason, "rejection_reason")
    alloc = get_allocation(allocation_id)
    _transition(alloc, AllocationStatus.REJECTED)
    alloc.rejection_reason = reason
    alloc.approved_by_id = approver.user_id
    alloc.approved_at = None

    outbox = Outbox()
    outbox.notify(
        [alloc.consultant_id, alloc.phase.project.product_manager_id],
        type="PHASE_ALLOCATION_REJECTED",
        title="Phase allocation rejected",
        message=f"Your allocation of {alloc.total_hours:g}h for {alloc.phase.name} "
                f"was rejected. Reason: {reason}",
        action_url=_action_url(alloc),
        metadata={"allocation_id": alloc.id, "reason": reason},
    )
    outbox.email(
        alloc.consultant,
        template_name="phase_allocation_decision",
        context=_email_context(alloc, status_label="rejected", reason_line=f"Reason: {reason}"),
    )
    db.session.commit()
    logger.info(
        "Phase allocation rejected",
        extra={"allocation_id": alloc.id, "user_id": approver.user_id},
    )
    outbox.flush()
    return alloc


# ═════════════════════════════════════════════════════════════════════════════
# Deletion
# ═════════════════════════════════════════════════════════════════════════════


def request_deletion(allocation_id: int, requester) -> PhaseAllocation:
    """Ask the Growth Team to remove an APPROVED allocation.

    Refused while any weekly plan on the allocation still awaits a decision,
    since removing the allocation would strand those hours.
    """
    alloc = get_allocation(allocation_id)
    require_product_manager(requester, alloc.phase.project, "request allocation deletion",
                            allow_growth_team=True)
    pending_weeks = [w for w in alloc.weekly_allocations if w.planning_status == PlanningStatus.PENDING]
    if pending_weeks:
        raise ConflictError(
            "PhaseAllocation",
            f"allocation {alloc.id} has {len(pending_weeks)} weekly plan(s) awaiting approval",
            current_status=alloc.approval_status.value,
        )
    _transition(alloc, AllocationStatus.DELETION_PENDING)

    outbox = Outbox()
    outbox.notify(
        growth_team_ids(),
        type="PHASE_ALLOCATION_DELETION_REQUESTED",
        title="Allocation deletion requested",
        message=f"Deletion requested for {alloc.consultant.display_name}'s "
                f"{alloc.total_hours:g}h on {alloc.phase.name}.",
        action_url="/approvals",
        metadata={"allocation_id": alloc.id, "requested_by": requester.user_id},
    )
    db.session.commit()
    logger.info(
        "Phase allocation deletion requested",
        extra={"allocation_id": alloc.id, "user_id": requester.user_id},
    )
    outbox.flush()
    return alloc


def decide_deletion(allocation_id: int, approver, approve_deletion: bool) -> PhaseAllocation | None:
    """Approve (remove the row) or reject (back to APPROVED) a deletion request.

    Returns:
        The allocation when the request was rejected, None when removed.
    """
    require_growth_team(approver, "decide allocation deletions")
    alloc = get_allocation(allocation_id)
    if alloc.approval_status != AllocationStatus.DELETION_PENDING:
        raise ConflictError(
            "PhaseAllocation",
            f"allocation {alloc.id} has no pending deletion request",
            current_status=alloc.approval_status.value,
        )

    recipients = [alloc.consultant_id, alloc.phase.project.product_manager_id]
    outbox = Outbox()
    if approve_deletion:
        outbox.notify(
            recipients,
            type="PHASE_ALLOCATION_DELETED",
            title="Allocation removed",
            message=f"The {alloc.total_hours:g}h allocation on {alloc.phase.name} was removed.",
            metadata={"allocation_id": alloc.id, "deleted": True},
        )
        alloc_id = alloc.id
        db.session.delete(alloc)
        db.session.commit()
        logger.info("Phase allocation deleted",
                    extra={"allocation_id": alloc_id, "user_id": approver.user_id})
        outbox.flush()
        return None

    _transition(alloc, AllocationStatus.APPROVED)
    outbox.notify(
        recipients,
        type="PHASE_ALLOCATION_APPROVED",
        title="Allocation deletion declined",
        message=f"The allocation on {alloc.phase.name} remains active.",
        action_url=_action_url(alloc),
        metadata={"allocation_id": alloc.id},
    )
    db.session.commit()
    logger.info("Phase allocation deletion declined",
                extra={"allocation_id": alloc.id, "user_id": approver.user_id})
    outbox.flush()
    return alloc


# ═════════════════════════════════════════════════════════════════════════════
# Expiry
# ═════════════════════════════════════════════════════════════════════════════


def expire(allocation_id: int, today: date | None = None):
    """Expire an APPROVED allocation whose phase has ended.

    Unplanned hours are ``total_hours`` minus approved/modified weekly hours.
    A remainder above the configured tolerance is recorded as an
    UnplannedExpiredHours row for the PM to forfeit or reallocate.

    Returns:
        (allocation, UnplannedExpiredHours | None)

    Raises:
        ConflictError: phase still running or allocation not APPROVED.
    """
    alloc = get_allocation(allocation_id)
    phase = alloc.phase
    if not phase.has_ended(today):
        raise ConflictError(
            "PhaseAllocation",
            f"phase {phase.id} has not ended yet",
            current_status=alloc.approval_status.value,
        )
    _transition(alloc, AllocationStatus.EXPIRED)
    alloc.expired_at = _now()

    unplanned = hour_ledger.unplanned_hours(alloc.total_hours, alloc.weekly_allocations)
    record = None
    outbox = Outbox()
    if unplanned > _tolerance():
        record = UnplannedExpiredHours(
            phase_allocation_id=alloc.id,
            consultant_id=alloc.consultant_id,
            phase_id=phase.id,
            unplanned_hours=unplanned,
            status=UnplannedStatus.UNPLANNED,
        )
        db.session.add(record)
        shown = f"{round(unplanned, 1):g}"
        project = phase.project
        meta = {"allocation_id": alloc.id, "unplanned_hours": round(unplanned, 1)}
        outbox.notify(
            [project.product_manager_id],
            type="PHASE_ALLOCATION_EXPIRED",
            title="Unplanned hours need action",
            message=f"{alloc.consultant.display_name} has {shown}h unplanned on {phase.name} "
                    f"({project.title}). Forfeit or reallocate them.",
            action_url=_action_url(alloc),
            metadata=meta,
        )
        outbox.notify(
            growth_team_ids(),
            type="PHASE_ALLOCATION_EXPIRED",
            title="Allocation expired with unplanned hours",
            message=f"{shown}h of {alloc.consultant.display_name}'s allocation on "
                    f"{phase.name} ({project.title}) expired unplanned.",
            metadata=meta,
        )
        outbox.notify(
            [alloc.consultant_id],
            type="PHASE_ALLOCATION_EXPIRED",
            title="Allocation expired",
            message=f"{phase.name} has ended with {shown}h of your allocation unplanned.",
            metadata=meta,
        )
        outbox.email(
            project.product_manager,
            template_name="allocation_expired",
            context=_email_context(alloc, unplanned_hours=shown),
        )

    db.session.commit()
    logger.info(
        "Phase allocation expired",
        extra={"allocation_id": alloc.id, "unplanned_hours": unplanned},
    )
    outbox.flush()
    return alloc, record


def find_expirable(today: date | None = None) -> list[PhaseAllocation]:
    """APPROVED allocations on ended phases that still carry unplanned hours."""
    today = today or date.today()
    stmt = (
        select(PhaseAllocation)
        .join(Phase, PhaseAllocation.phase_id == Phase.id)
        .where(
            PhaseAllocation.approval_status == AllocationStatus.APPROVED,
            Phase.end_date.is_not(None),
            Phase.end_date < today,
        )
        .order_by(PhaseAllocation.id)
    )
    tolerance = _tolerance()
    return [
        a for a in db.session.execute(stmt).scalars()
        if hour_ledger.has_unplanned(a.total_hours, a.weekly_allocations, tolerance)
    ]


def expire_due(today: date | None = None) -> dict:
    """Expire every allocation returned by ``find_expirable``.

    Each allocation is its own transaction; a failure on one is logged and
    the sweep continues.
    """
    candidates = [a.id for a in find_expirable(today)]
    results = {"checked": len(candidates), "expired": 0, "failed": 0, "unplanned_hours": 0.0}
    for alloc_id in candidates:
        try:
            _alloc, record = expire(alloc_id, today=today)
        except (ConflictError, NotFoundError) as exc:
            db.session.rollback()
            results["failed"] += 1
            logger.warning("Skipping expiry of allocation %s: %s", alloc_id, exc)
            continue
        results["expired"] += 1
        if record is not None:
            results["unplanned_hours"] += record.unplanned_hours
    results["unplanned_hours"] = round(results["unplanned_hours"], 1)
    return results


# ═════════════════════════════════════════════════════════════════════════════
# Forfeit / reallocate
# ═════════════════════════════════════════════════════════════════════════════


def _open_unplanned_record(alloc: PhaseAllocation) -> UnplannedExpiredHours:
    record = alloc.unplanned_record
    if record is None:
        raise NotFoundError("UnplannedExpiredHours", resource_id=alloc.id)
    if not validate_unplanned_transition(record.status, UnplannedStatus.FORFEITED):
        raise ConflictError(
            "UnplannedExpiredHours",
            f"unplanned hours of allocation {alloc.id} have already been handled",
            current_status=record.status.value,
        )
    return record


def forfeit(allocation_id: int, pm, notes: str | None = None) -> PhaseAllocation:
    """Write off an EXPIRED allocation's unplanned remainder."""
    alloc = get_allocation(allocation_id)
    project = alloc.phase.project
    require_product_manager(pm, project, "forfeit unplanned hours")
    record = _open_unplanned_record(alloc)
    _transition(alloc, AllocationStatus.FORFEITED)

    record.status = UnplannedStatus.FORFEITED
    record.handled_by_id = pm.user_id
    record.handled_at = _now()
    record.notes = notes

    shown = f"{round(record.unplanned_hours, 1):g}"
    meta = {"allocation_id": alloc.id, "unplanned_hours": record.unplanned_hours}
    outbox = Outbox()
    outbox.notify(
        growth_team_ids(),
        type="PHASE_ALLOCATION_FORFEITED",
        title="Unplanned hours forfeited",
        message=f"{shown}h of {alloc.consultant.display_name}'s allocation on "
                f"{alloc.phase.name} ({project.title}) were forfeited.",
        metadata=meta,
    )
    outbox.notify(
        [alloc.consultant_id],
        type="PHASE_ALLOCATION_FORFEITED",
        title="Unplanned hours forfeited",
        message=f"The {shown}h left unplanned on {alloc.phase.name} were forfeited.",
        metadata=meta,
    )
    db.session.commit()
    logger.info("Unplanned hours forfeited",
                extra={"allocation_id": alloc.id, "user_id": pm.user_id})
    outbox.flush()
    return alloc


def reallocate(source_allocation_id: int, target_phase_id: int, pm,
               notes: str | None = None) -> PhaseAllocation:
    """Move an EXPIRED allocation's unplanned remainder onto another phase.

    Creates a PENDING child allocation for the same consultant with
    ``total_hours`` equal to the remainder; the source stays EXPIRED.

    Returns:
        The new child PhaseAllocation.
    """
    source = get_allocation(source_allocation_id)
    project = source.phase.project
    require_product_manager(pm, project, "reallocate unplanned hours")
    if source.approval_status != AllocationStatus.EXPIRED:
        raise ConflictError(
            "PhaseAllocation",
            f"allocation {source.id} is not expired",
            current_status=source.approval_status.value,
        )
    record = _open_unplanned_record(source)
    if record.unplanned_hours <= 0:
        raise ConflictError("UnplannedExpiredHours", f"allocation {source.id} has no unplanned hours")

    target = get_or_404(Phase, target_phase_id)
    if target.project_id != project.id:
        raise ValidationError(
            "target phase must belong to the same project",
            details={"target_phase_id": "other_project"},
        )
    if target.has_ended():
        raise ValidationError(
            "target phase has already ended",
            details={"target_phase_id": "ended"},
        )

    child = PhaseAllocation(
        consultant_id=source.consultant_id,
        phase_id=target.id,
        total_hours=record.unplanned_hours,
        approval_status=AllocationStatus.PENDING,
        parent_allocation_id=source.id,
        created_by_id=pm.user_id,
    )
    db.session.add(child)
    db.session.flush()

    record.status = UnplannedStatus.REALLOCATED
    record.reallocated_to_phase_id = target.id
    record.reallocated_to_allocation_id = child.id
    record.handled_by_id = pm.user_id
    record.handled_at = _now()
    record.notes = notes

    shown = f"{round(record.unplanned_hours, 1):g}"
    meta = {"allocation_id": source.id, "child_allocation_id": child.id,
            "target_phase_id": target.id, "hours": record.unplanned_hours}
    outbox = Outbox()
    outbox.notify(
        growth_team_ids(),
        type="PHASE_ALLOCATION_REALLOCATED",
        title="Reallocation awaiting approval",
        message=f"{shown}h of {source.consultant.display_name}'s expired allocation on "
                f"{source.phase.name} were reallocated to {target.name} ({project.title}).",
        action_url="/approvals",
        metadata=meta,
    )
    outbox.notify(
        [source.consultant_id],
        type="PHASE_ALLOCATION_REALLOCATED",
        title="Hours reallocated",
        message=f"{shown}h left unplanned on {source.phase.name} were reallocated to "
                f"{target.name}, pending approval.",
        metadata=meta,
    )
    db.session.commit()
    logger.info(
        "Unplanned hours reallocated",
        extra={"allocation_id": source.id, "child_allocation_id": child.id, "user_id": pm.user_id},
    )
    outbox.flush()
    return child


# ═════════════════════════════════════════════════════════════════════════════
# Merge (invariant repair)
# ═════════════════════════════════════════════════════════════════════════════


def _fold_weeks(child: PhaseAllocation, parent: PhaseAllocation) -> int:
    """Re-point the child's weekly rows to the parent; returns rows folded."""
    by_week = {(w.week_number, w.year): w for w in parent.weekly_allocations}
    folded = 0
    for week in list(child.weekly_allocations):
        target = by_week.get((week.week_number, week.year))
        if target is None:
            week.phase_allocation = parent
            by_week[(week.week_number, week.year)] = week
            continue
        if target.approved_hours is not None or week.approved_hours is not None:
            target.approved_hours = target.effective_hours + week.effective_hours
        target.proposed_hours = (target.proposed_hours or 0) + (week.proposed_hours or 0)
        db.session.delete(week)
        folded += 1
    return folded


def merge_approved_child(child_id: int) -> PhaseAllocation:
    """Fold an APPROVED child allocation into its parent in one transaction.

    The parent's ``total_hours`` grows by the child's, the child's weekly
    rows move to the parent and the child row is deleted.  Calling it again
    for the same id raises NotFoundError.

    Returns:
        The parent PhaseAllocation.
    """
    child = db.session.get(PhaseAllocation, child_id)
    if child is None:
        raise NotFoundError("PhaseAllocation", resource_id=child_id)
    if child.parent_allocation_id is None or child.parent is None:
        raise ConflictError("PhaseAllocation", f"allocation {child.id} has no parent to merge into")
    if child.approval_status != AllocationStatus.APPROVED:
        raise ConflictError(
            "PhaseAllocation",
            f"only approved children are merged; allocation {child.id} is {child.approval_status.value}",
            current_status=child.approval_status.value,
        )

    parent = child.parent
    added = child.total_hours
    parent.total_hours = (parent.total_hours or 0) + added
    folded = _fold_weeks(child, parent)

    for record in db.session.execute(
        select(UnplannedExpiredHours).where(UnplannedExpiredHours.reallocated_to_allocation_id == child.id)
    ).scalars():
        record.reallocated_to_allocation_id = None

    db.session.delete(child)
    db.session.commit()
    logger.info(
        "Merged approved child %s into parent %s (+%.2fh, %d week(s) folded)",
        child_id, parent.id, added, folded,
        extra={"allocation_id": parent.id, "child_allocation_id": child_id},
    )
    return parent


def find_approved_children() -> list[PhaseAllocation]:
    stmt = select(PhaseAllocation).where(
        PhaseAllocation.parent_allocation_id.is_not(None),
        PhaseAllocation.approval_status == AllocationStatus.APPROVED,
    ).order_by(PhaseAllocation.id)
    return db.session.execute(stmt).scalars().all()


def merge_all_approved_children() -> dict:
    """Repair sweep: merge every approved child found."""
    child_ids = [c.id for c in find_approved_children()]
    results = {"found": len(child_ids), "merged": 0, "hours_merged": 0.0, "failed": 0}
    for child_id in child_ids:
        child = db.session.get(PhaseAllocation, child_id)
        hours = child.total_hours if child else 0
        try:
            merge_approved_child(child_id)
        except (ConflictError, NotFoundError) as exc:
            db.session.rollback()
            results["failed"] += 1
            logger.warning("Skipping merge of allocation %s: %s", child_id, exc)
            continue
        results["merged"] += 1
        results["hours_merged"] += hours
    return results
