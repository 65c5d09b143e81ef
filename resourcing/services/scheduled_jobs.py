"""
Resource Allocation Platform
Scheduled Jobs.

Concrete job implementations, triggered by the external scheduler through
the cron endpoint, the jobs API or the ``flask`` CLI.

Jobs:
    - expired_allocation_detector: expires APPROVED allocations on ended
      phases that still carry unplanned hours
    - approved_child_merge: folds APPROVED child allocations into their parents
    - overdue_approval_alert: reminds the Growth Team of hour change
      requests pending past the approval SLA
    - phase_end_alert: warns PMs and consultants with unplanned hours that
      a phase is about to end
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import select

from resourcing.models import db
from resourcing.models.allocation import AllocationStatus, PhaseAllocation
from resourcing.models.project import Phase
from resourcing.services import hour_ledger
from resourcing.services import phase_allocation_service
from resourcing.services.approvals_service import phases_ending_soon
from resourcing.services.hour_change_service import list_overdue
from resourcing.services.notification import NotificationService, growth_team_ids
from resourcing.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Expired allocation detector
# ═══════════════════════════════════════════════════════════════════════════

@register_job("expired_allocation_detector")
def detect_expired_allocations(app) -> dict[str, Any]:
    """Expire APPROVED allocations whose phase has ended with hours left unplanned."""
    results = phase_allocation_service.expire_due(date.today())
    logger.info("Expired allocation sweep: %s", results, extra={"job_name": "expired_allocation_detector"})
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Approved child merge
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approved_child_merge")
def merge_approved_children(app) -> dict[str, Any]:
    """Merge every APPROVED child allocation into its parent."""
    results = phase_allocation_service.merge_all_approved_children()
    logger.info("Approved child merge sweep: %s", results, extra={"job_name": "approved_child_merge"})
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Overdue approval alert
# ═══════════════════════════════════════════════════════════════════════════

@register_job("overdue_approval_alert")
def alert_overdue_approvals(app) -> dict[str, Any]:
    """Notify the Growth Team about hour change requests pending too long."""
    overdue = list_overdue()
    results = {"overdue": len(overdue), "notifications_created": 0}
    if not overdue:
        return results

    threshold = app.config.get("OVERDUE_APPROVAL_HOURS", 48)
    oldest = overdue[0]
    created = NotificationService.broadcast(
        user_ids=growth_team_ids(),
        type="APPROVAL_OVERDUE",
        title=f"{len(overdue)} hour change request(s) overdue",
        message=f"{len(overdue)} request(s) have been pending for more than {threshold}h; "
                f"the oldest for {oldest['hours_pending']}h.",
        action_url="/approvals",
        metadata={"request_ids": [r["id"] for r in overdue]},
    )
    results["notifications_created"] = len(created)
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Phase end alert
# ═══════════════════════════════════════════════════════════════════════════

def _consultants_with_unplanned_hours(phase_id: int) -> list[int]:
    stmt = select(PhaseAllocation).where(
        PhaseAllocation.phase_id == phase_id,
        PhaseAllocation.approval_status == AllocationStatus.APPROVED,
    )
    return [
        a.consultant_id for a in db.session.execute(stmt).scalars()
        if hour_ledger.has_unplanned(a.total_hours, a.weekly_allocations)
    ]


@register_job("phase_end_alert")
def alert_phase_end(app) -> dict[str, Any]:
    """Warn about phases ending today or exactly at the end of the warning window."""
    days = app.config.get("PHASE_END_WARNING_DAYS", 7)
    window = phases_ending_soon(date.today(), days)
    due = window["ending_today"] + [p for p in window["ending_soon"] if p["days_remaining"] == days]

    results = {"phases": len(due), "notifications_created": 0}
    for entry in due:
        phase = db.session.get(Phase, entry["id"])
        remaining = entry["days_remaining"]
        when = "today" if remaining == 0 else f"in {remaining} days"
        recipients = [phase.project.product_manager_id, *_consultants_with_unplanned_hours(phase.id)]
        created = NotificationService.broadcast(
            user_ids=recipients,
            type="PHASE_ENDING_SOON",
            title=f"Phase {phase.name} ends {when}",
            message=f"{entry['project_title']} / {phase.name} ends on {entry['end_date']}. "
                    f"Unplanned hours expire after the phase ends.",
            action_url=f"/phases/{phase.id}",
            metadata={"phase_id": phase.id, "days_remaining": remaining},
        )
        results["notifications_created"] += len(created)
    return results
