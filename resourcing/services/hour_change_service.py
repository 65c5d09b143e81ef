"""
Hour change request service.

A request adjusts an allocation's total outside weekly planning:

    INCREASE   total += requested_hours
    DECREASE   total -= requested_hours, floored at 0
    TRANSFER   shift_hours leave the source allocation (floored at 0) and
               land on the receiving consultant's allocation for the same
               phase, which is created APPROVED when it does not exist;
               a receiver holding only a PENDING or DELETION_PENDING
               allocation there is a ConflictError

Approval also needs the allocation itself to be APPROVED still: hours
on an allocation that has left APPROVED are frozen.

Only PENDING requests can be decided; anything else is a ConflictError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from resourcing.core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from resourcing.models import db
from resourcing.models.allocation import AllocationStatus, PhaseAllocation
from resourcing.models.hour_change import (
    REQUEST_TYPES_BY_CHANGE,
    ChangeStatus,
    ChangeType,
    HourChangeRequest,
    RequestType,
    validate_change_transition,
)
from resourcing.models.project import Phase
from resourcing.models.user import User
from resourcing.services import hour_ledger
from resourcing.services.helpers.permissions import require_growth_team
from resourcing.services.helpers.scoped_queries import AllocationScope, get_or_404
from resourcing.services.helpers.validation import parse_enum, parse_hours, require_reason
from resourcing.services.notification import Outbox, growth_team_ids
from resourcing.services.phase_allocation_service import ACTIVE_STATUSES

logger = logging.getLogger(__name__)

_VERBS = {
    RequestType.INCREASE: "increase",
    RequestType.DECREASE: "decrease",
    RequestType.TRANSFER: "transfer",
}


def _now():
    return datetime.now(timezone.utc)


def _parse_user_id(value, field):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} is required for transfers", details={field: "required"})
    return value


def create_request(actor, *, phase_allocation_id: int, change_type, reason,
                   request_type=None, requested_hours=None,
                   from_consultant_id=None, to_consultant_id=None, shift_hours=None) -> HourChangeRequest:
    """Open a PENDING hour change request on an APPROVED allocation.

    Args:
        actor: the allocation's consultant, its project's PM, or Growth Team.
        change_type: ADJUSTMENT (INCREASE/DECREASE) or SHIFT (TRANSFER).
        reason: mandatory justification.

    Raises:
        ValidationError: missing reason, bad type/hours, malformed transfer.
        PermissionDeniedError: actor unrelated to the allocation.
        ConflictError: allocation is not APPROVED.
    """
    reason = require_reason(reason)
    change_type = parse_enum(ChangeType, change_type, "change_type")

    if change_type == ChangeType.SHIFT:
        request_type = parse_enum(RequestType, request_type or RequestType.TRANSFER, "request_type")
        from_id = _parse_user_id(from_consultant_id, "from_consultant_id")
        to_id = _parse_user_id(to_consultant_id, "to_consultant_id")
        if from_id == to_id:
            raise ValidationError("cannot transfer hours to the same consultant",
                                  details={"to_consultant_id": "same_as_source"})
        hours = parse_hours(shift_hours, "shift_hours", allow_zero=False)
    else:
        request_type = parse_enum(RequestType, request_type, "request_type")
        from_id = to_id = None
        hours = parse_hours(requested_hours, "requested_hours", allow_zero=False)
    if request_type not in REQUEST_TYPES_BY_CHANGE[change_type]:
        raise ValidationError(
            f"request_type {request_type.value} does not match change_type {change_type.value}",
            details={"request_type": "invalid"},
        )

    alloc = get_or_404(PhaseAllocation, phase_allocation_id)
    project = alloc.phase.project
    if not (actor.is_growth_team or actor.user_id == alloc.consultant_id
            or project.is_product_manager(actor.user_id)):
        raise PermissionDeniedError("Only the consultant, the project's PM or the Growth Team can request hour changes")
    if alloc.approval_status != AllocationStatus.APPROVED:
        raise ConflictError(
            "PhaseAllocation",
            f"hour changes require an approved allocation; {alloc.id} is {alloc.approval_status.value}",
            current_status=alloc.approval_status.value,
        )
    if change_type == ChangeType.SHIFT:
        if alloc.consultant_id != from_id:
            raise ValidationError("from_consultant_id must own the source allocation",
                                  details={"from_consultant_id": "not_owner"})
        get_or_404(User, to_id)

    req = HourChangeRequest(
        phase_allocation_id=alloc.id,
        phase_id=alloc.phase_id,
        requester_id=actor.user_id,
        change_type=change_type,
        request_type=request_type,
        original_hours=alloc.total_hours,
        requested_hours=hours,
        from_consultant_id=from_id,
        to_consultant_id=to_id,
        shift_hours=hours if change_type == ChangeType.SHIFT else None,
        reason=reason,
        status=ChangeStatus.PENDING,
    )
    db.session.add(req)
    db.session.flush()

    verb = _VERBS[request_type]
    meta = {"hour_change_request_id": req.id, "phase_allocation_id": alloc.id}
    reviewers = [uid for uid in [project.product_manager_id, *growth_team_ids()] if uid != actor.user_id]
    outbox = Outbox()
    outbox.notify(
        reviewers,
        type="HOUR_CHANGE_REQUESTED",
        title="Hour change requested",
        message=f"Request to {verb} {hours:g} hours for {alloc.phase.name} in {project.title}. "
                f"Reason: {reason}",
        action_url="/approvals/hour-changes",
        metadata=meta,
    )
    outbox.notify(
        [actor.user_id],
        type="HOUR_CHANGE_REQUESTED",
        title="Hour change request submitted",
        message=f"Your request to {verb} {hours:g} hours for {alloc.phase.name} has been submitted.",
        metadata=meta,
    )
    db.session.commit()
    logger.info(
        "Hour change requested: %s %.2fh", request_type.value, hours,
        extra={"hour_change_request_id": req.id, "allocation_id": alloc.id, "user_id": actor.user_id},
    )
    outbox.flush()
    return req


def _receiving_allocation(req: HourChangeRequest) -> PhaseAllocation | None:
    """The receiver's APPROVED allocation on the phase, or None when they hold none.

    A receiver whose only allocation is still PENDING or DELETION_PENDING
    cannot take hours: creating a fresh row would give them two top-level
    allocations on the same phase.
    """
    held = db.session.execute(
        select(PhaseAllocation)
        .where(
            PhaseAllocation.phase_id == req.phase_id,
            PhaseAllocation.consultant_id == req.to_consultant_id,
            PhaseAllocation.approval_status.in_(ACTIVE_STATUSES),
        )
        .order_by(PhaseAllocation.parent_allocation_id.is_not(None), PhaseAllocation.id)
    ).scalars().all()
    for candidate in held:
        if candidate.approval_status == AllocationStatus.APPROVED:
            return candidate
    if held:
        raise ConflictError(
            "PhaseAllocation",
            f"consultant {req.to_consultant_id} has a {held[0].approval_status.value.lower()} "
            f"allocation on this phase; decide it before transferring hours",
            current_status=held[0].approval_status.value,
        )
    return None


def _apply_approval(req: HourChangeRequest, approver) -> dict:
    alloc = req.phase_allocation
    before = alloc.total_hours or 0
    if req.request_type == RequestType.INCREASE:
        alloc.total_hours = before + req.requested_hours
        moved = req.requested_hours
    elif req.request_type == RequestType.DECREASE:
        alloc.total_hours = max(0.0, before - req.requested_hours)
        moved = before - alloc.total_hours
    else:
        target = _receiving_allocation(req)
        moved = min(req.shift_hours or 0, before)
        alloc.total_hours = before - moved
        if target is None:
            target = PhaseAllocation(
                consultant_id=req.to_consultant_id,
                phase_id=req.phase_id,
                total_hours=moved,
                approval_status=AllocationStatus.APPROVED,
                created_by_id=req.requester_id,
                approved_by_id=approver.user_id,
                approved_at=_now(),
            )
            db.session.add(target)
        else:
            target.total_hours = (target.total_hours or 0) + moved
        db.session.flush()
        return {"previous_hours": before, "new_hours": alloc.total_hours,
                "moved_hours": moved, "target_allocation_id": target.id}
    return {"previous_hours": before, "new_hours": alloc.total_hours, "moved_hours": moved}


def decide(request_id: int, approver, action, rejection_reason=None) -> tuple[HourChangeRequest, dict]:
    """Approve or reject a PENDING request.

    Returns:
        (request, effect) where ``effect`` describes the hour change applied
        (empty on rejection) and any resulting planning overrun.
    """
    require_growth_team(approver, "decide hour change requests")
    action = (action or "").strip().lower() if isinstance(action, str) else ""
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'", details={"action": "invalid"})
    reason = require_reason(rejection_reason, "rejection_reason") if action == "reject" else None

    req = get_or_404(HourChangeRequest, request_id)
    new_status = ChangeStatus.APPROVED if action == "approve" else ChangeStatus.REJECTED
    if not validate_change_transition(req.status, new_status):
        raise ConflictError(
            "HourChangeRequest",
            f"request {req.id} has already been {req.status.value.lower()}",
            current_status=req.status.value,
        )

    alloc = req.phase_allocation
    if new_status == ChangeStatus.APPROVED and alloc.approval_status != AllocationStatus.APPROVED:
        raise ConflictError(
            "PhaseAllocation",
            f"allocation {alloc.id} is {alloc.approval_status.value.lower()}; "
            f"request {req.id} can only be rejected",
            current_status=alloc.approval_status.value,
        )
    effect: dict = {}
    req.status = new_status
    req.approver_id = approver.user_id
    if new_status == ChangeStatus.APPROVED:
        effect = _apply_approval(req, approver)
        req.approved_at = _now()
        overrun = hour_ledger.overrun_hours(alloc.total_hours, alloc.weekly_allocations)
        if overrun > 0:
            effect["overrun_hours"] = overrun
            logger.warning(
                "Allocation %s now plans %.2fh more than its total", alloc.id, overrun,
                extra={"allocation_id": alloc.id, "hour_change_request_id": req.id},
            )
    else:
        req.rejection_reason = reason
        req.rejected_at = _now()

    verb = _VERBS[req.request_type]
    subject = (f"Your request to {verb} {req.requested_hours:g} hours for {alloc.phase.name} "
               f"in {alloc.phase.project.title}")
    if new_status == ChangeStatus.APPROVED:
        message = f"{subject} has been approved."
        reason_line = ""
    else:
        message = f"{subject} has been rejected. Reason: {reason}"
        reason_line = f"Reason: {reason}"
    notif_type = "HOUR_CHANGE_APPROVED" if new_status == ChangeStatus.APPROVED else "HOUR_CHANGE_REJECTED"
    meta = {"hour_change_request_id": req.id, "phase_allocation_id": alloc.id, **effect}

    outbox = Outbox()
    outbox.notify(
        [req.requester_id],
        type=notif_type,
        title=f"Hour change request {new_status.value.lower()}",
        message=message,
        action_url="/hour-requests",
        metadata=meta,
    )
    if req.request_type == RequestType.TRANSFER and new_status == ChangeStatus.APPROVED:
        outbox.notify(
            [req.from_consultant_id, req.to_consultant_id],
            type=notif_type,
            title="Hours transferred",
            message=f"{effect['moved_hours']:g} hours on {alloc.phase.name} were transferred "
                    f"between consultants.",
            metadata=meta,
        )
    outbox.email(
        req.requester,
        template_name="hour_change_decision",
        context={"status_label": new_status.value.lower(), "summary": message,
                 "reason_line": reason_line},
    )
    db.session.commit()
    logger.info(
        "Hour change request %s", new_status.value.lower(),
        extra={"hour_change_request_id": req.id, "allocation_id": alloc.id, "user_id": approver.user_id},
    )
    outbox.flush()
    return req, effect


def _scoped_requests(actor):
    scope = AllocationScope.for_actor(actor)
    stmt = select(HourChangeRequest).join(Phase, HourChangeRequest.phase_id == Phase.id)
    return scope.apply(stmt, HourChangeRequest.requester_id, Phase.project_id)


def list_pending(actor) -> list[HourChangeRequest]:
    stmt = _scoped_requests(actor).where(HourChangeRequest.status == ChangeStatus.PENDING)
    return db.session.execute(stmt.order_by(HourChangeRequest.created_at)).scalars().all()


def list_overdue(now: datetime | None = None, threshold_hours: int | None = None) -> list[dict]:
    """PENDING requests older than OVERDUE_APPROVAL_HOURS, oldest first."""
    now = now or _now()
    if threshold_hours is None:
        threshold_hours = current_app.config.get("OVERDUE_APPROVAL_HOURS", 48)
    cutoff = now - timedelta(hours=threshold_hours)
    stmt = (
        select(HourChangeRequest)
        .where(HourChangeRequest.status == ChangeStatus.PENDING,
               HourChangeRequest.created_at < cutoff)
        .order_by(HourChangeRequest.created_at)
    )
    overdue = []
    for req in db.session.execute(stmt).scalars():
        created = req.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        d = req.to_dict()
        d["hours_pending"] = round((now - created).total_seconds() / 3600, 1)
        overdue.append(d)
    return overdue
