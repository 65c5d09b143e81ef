"""
Notifications, outbox delivery, email and scheduled jobs.

Covers:
    1. NotificationService (create, broadcast dedupe, queries, mark read)
    2. Outbox: delivery after commit, failure isolation
    3. EmailService template rendering + dev-mode send
    4. SchedulerService registry, run recording, enable/disable
    5. The four scheduled jobs
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

from resourcing.models import db
from resourcing.models.allocation import AllocationStatus, PlanningStatus
from resourcing.models.hour_change import (
    ChangeStatus,
    ChangeType,
    HourChangeRequest,
    RequestType,
)
from resourcing.models.notification import Notification
from resourcing.models.scheduling import EmailLog, ScheduledJob
from resourcing.services import phase_allocation_service
from resourcing.services.email_service import EmailService
from resourcing.services.notification import NotificationService, Outbox
from resourcing.services.scheduler_service import SchedulerService, get_registered_jobs


# ═══════════════════════════════════════════════════════════════════════════
#  NotificationService
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationService:
    def test_broadcast_dedupes_and_skips_none(self, world):
        created = NotificationService.broadcast(
            user_ids=[world.pm.id, None, world.pm.id, world.growth.id],
            title="Heads up", type="SYSTEM",
        )
        assert len(created) == 2
        assert Notification.query.count() == 2

    def test_list_and_unread_count(self, world):
        for i in range(3):
            NotificationService.create(user_id=world.pm.id, title=f"N{i}")
        NotificationService.create(user_id=world.growth.id, title="other")
        items, total = NotificationService.list_for_recipient(world.pm.id, limit=2)
        assert total == 3
        assert len(items) == 2
        assert items[0].title == "N2"
        assert NotificationService.unread_count(world.pm.id) == 3

    def test_mark_read_only_own(self, world):
        notif = NotificationService.create(user_id=world.pm.id, title="mine")
        assert NotificationService.mark_read(notif.id, world.growth.id) is None
        marked = NotificationService.mark_read(notif.id, world.pm.id)
        assert marked.is_read is True
        assert marked.read_at is not None

    def test_mark_all_read(self, world):
        for _ in range(2):
            NotificationService.create(user_id=world.pm.id, title="x")
        assert NotificationService.mark_all_read(world.pm.id) == 2
        assert NotificationService.unread_count(world.pm.id) == 0
        _items, total = NotificationService.list_for_recipient(world.pm.id, unread_only=True)
        assert total == 0


# ═══════════════════════════════════════════════════════════════════════════
#  Outbox
# ═══════════════════════════════════════════════════════════════════════════

class TestOutbox:
    def test_nothing_delivered_before_flush(self, world):
        outbox = Outbox()
        outbox.notify([world.pm.id], type="SYSTEM", title="later")
        assert len(outbox) == 1
        assert Notification.query.count() == 0
        assert outbox.flush() == {"delivered": 1, "failed": 0}
        assert Notification.query.count() == 1
        assert len(outbox) == 0

    def test_empty_recipients_are_dropped(self):
        outbox = Outbox()
        outbox.notify([None], type="SYSTEM", title="nobody")
        assert len(outbox) == 0

    def test_failed_effect_does_not_block_the_rest(self, world):
        outbox = Outbox()
        outbox.email(world.pm, template_name="phase_allocation_decision", context={})
        outbox.notify([world.pm.id], type="SYSTEM", title="still delivered")
        with patch.object(EmailService, "send_from_template", side_effect=RuntimeError("smtp down")):
            result = outbox.flush()
        assert result == {"delivered": 1, "failed": 1}
        assert Notification.query.filter_by(title="still delivered").count() == 1

    def test_transition_survives_delivery_failure(self, world, factory):
        alloc = factory.allocation(world.consultant, world.phase, status=AllocationStatus.PENDING)
        with patch.object(NotificationService, "broadcast", side_effect=RuntimeError("boom")):
            phase_allocation_service.approve(alloc.id, world.growth_actor)
        db.session.expire_all()
        assert alloc.approval_status == AllocationStatus.APPROVED


# ═══════════════════════════════════════════════════════════════════════════
#  EmailService
# ═══════════════════════════════════════════════════════════════════════════

class TestEmailService:
    def test_render_fills_context(self, app):
        subject, html, text = EmailService.render(
            "allocation_expired",
            {"consultant_name": "Cody", "phase_name": "Build", "project_title": "Atlas",
             "unplanned_hours": "12"},
        )
        assert "Build" in subject
        assert "12" in text
        assert "Cody" in html

    def test_render_escapes_user_text_in_html(self, app):
        _subject, html, text = EmailService.render(
            "phase_allocation_decision",
            {"consultant_name": "<b>Cody</b>", "phase_name": "Build", "project_title": "Atlas",
             "total_hours": "40", "status_label": "rejected",
             "reason_line": 'Reason: <script>alert("x")</script>'},
        )
        assert "<script>" not in html
        assert "&lt;script&gt;alert(&quot;x&quot;)&lt;/script&gt;" in html
        assert "&lt;b&gt;Cody&lt;/b&gt;" in html
        assert '<script>alert("x")</script>' in text

    def test_render_keeps_prebuilt_week_rows(self, app):
        _subject, html, _text = EmailService.render(
            "weekly_allocation_decision",
            {"consultant_name": "Cody", "phase_name": "Build", "status_label": "approved",
             "summary": "Week 3 & 4 approved", "week_rows": "<tr><td>Week 3</td></tr>",
             "week_lines": ""},
        )
        assert "<tr><td>Week 3</td></tr>" in html
        assert "Week 3 &amp; 4 approved" in html

    def test_unknown_template(self, world):
        assert EmailService.send_from_template(to_email="a@b.c", template_name="nope", context={}) is None

    def test_dev_mode_logs_without_smtp(self, world):
        log = EmailService.send_from_template(
            to_email=world.pm.email, to_name=world.pm.display_name,
            template_name="hour_change_decision",
            context={"status_label": "approved", "summary": "ok", "reason_line": ""},
        )
        db.session.commit()
        assert log.status == "sent"
        assert EmailLog.query.count() == 1


# ═══════════════════════════════════════════════════════════════════════════
#  SchedulerService
# ═══════════════════════════════════════════════════════════════════════════

JOB_NAMES = {
    "expired_allocation_detector",
    "approved_child_merge",
    "overdue_approval_alert",
    "phase_end_alert",
}


class TestSchedulerService:
    def test_jobs_registered(self):
        assert JOB_NAMES <= set(get_registered_jobs())

    def test_ensure_jobs_registered_is_idempotent(self):
        created = SchedulerService.ensure_jobs_registered()
        assert {j.job_name for j in created} == JOB_NAMES
        assert SchedulerService.ensure_jobs_registered() == []
        job = ScheduledJob.query.filter_by(job_name="expired_allocation_detector").one()
        assert job.schedule_config["description"] == "Daily at 01:00"

    def test_run_records_result(self, world):
        result = SchedulerService.run_job("approved_child_merge")
        assert result["status"] == "success"
        assert result["result"]["found"] == 0
        job = ScheduledJob.query.filter_by(job_name="approved_child_merge").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"

    def test_unknown_job(self):
        assert SchedulerService.run_job("nope")["status"] == "error"

    def test_disabled_job_is_skipped(self, world):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("phase_end_alert", False)
        assert SchedulerService.run_job("phase_end_alert")["status"] == "skipped"

    def test_failure_is_recorded(self, world):
        with patch("resourcing.services.phase_allocation_service.merge_all_approved_children",
                   side_effect=RuntimeError("db gone")):
            result = SchedulerService.run_job("approved_child_merge")
        assert result["status"] == "failed"
        assert "db gone" in result["error"]
        job = ScheduledJob.query.filter_by(job_name="approved_child_merge").one()
        assert job.error_count == 1
        assert job.last_error == "db gone"

    def test_list_jobs(self):
        SchedulerService.ensure_jobs_registered()
        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert JOB_NAMES <= set(jobs)
        assert jobs["phase_end_alert"]["db_record"]["is_enabled"] is True


# ═══════════════════════════════════════════════════════════════════════════
#  Scheduled jobs
# ═══════════════════════════════════════════════════════════════════════════

class TestScheduledJobs:
    def test_expired_allocation_detector(self, world, factory):
        ended = factory.ended_phase(world.project)
        alloc = factory.allocation(world.consultant, ended, hours=12)
        result = SchedulerService.run_job("expired_allocation_detector")
        assert result["result"]["expired"] == 1
        assert result["result"]["unplanned_hours"] == 12
        db.session.expire_all()
        assert alloc.approval_status == AllocationStatus.EXPIRED

    def test_overdue_approval_alert(self, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        req = HourChangeRequest(
            phase_allocation_id=alloc.id, phase_id=world.phase.id, requester_id=world.consultant.id,
            change_type=ChangeType.ADJUSTMENT, request_type=RequestType.INCREASE,
            original_hours=40, requested_hours=5, reason="more", status=ChangeStatus.PENDING,
            created_at=datetime.now(timezone.utc) - timedelta(hours=72),
        )
        db.session.add(req)
        db.session.commit()

        result = SchedulerService.run_job("overdue_approval_alert")
        assert result["result"] == {"overdue": 1, "notifications_created": 1}
        notif = Notification.query.filter_by(user_id=world.growth.id, type="APPROVAL_OVERDUE").one()
        assert notif.meta["request_ids"] == [req.id]

    def test_overdue_alert_quiet_when_nothing_overdue(self, world):
        result = SchedulerService.run_job("overdue_approval_alert")
        assert result["result"] == {"overdue": 0, "notifications_created": 0}

    def test_phase_end_alert(self, world, factory):
        today = date.today()
        ending_today = factory.phase(world.project, name="Wrap", end=today)
        ending_in_window = factory.phase(world.project, name="Pilot", end=today + timedelta(days=7))
        factory.phase(world.project, name="Later", end=today + timedelta(days=3))

        unplanned = factory.allocation(world.consultant, ending_today, hours=20)
        planned = factory.allocation(world.other, ending_today, hours=5)
        monday = today - timedelta(days=today.weekday())
        factory.week(planned, monday, proposed=5, approved=5, status=PlanningStatus.APPROVED)
        factory.week(unplanned, monday, proposed=5, approved=5, status=PlanningStatus.APPROVED)

        result = SchedulerService.run_job("phase_end_alert")
        assert result["result"]["phases"] == 2
        types = Notification.query.filter_by(type="PHASE_ENDING_SOON")
        recipients_today = {n.user_id for n in types if n.meta["phase_id"] == ending_today.id}
        assert recipients_today == {world.pm.id, world.consultant.id}
        assert types.filter_by(user_id=world.pm.id).count() == 2
        assert ending_in_window.id in {n.meta["phase_id"] for n in types}
