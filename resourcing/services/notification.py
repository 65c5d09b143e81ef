"""
Resource Allocation Platform
Notification Service.

Two pieces:

    NotificationService  create / broadcast / query notification rows
    Outbox               side effects collected while a workflow
                         transition runs and delivered only after the
                         transition has committed

Outbox usage inside a service:

    outbox = Outbox()
    alloc.approval_status = AllocationStatus.APPROVED
    outbox.notify([alloc.consultant_id], type="PHASE_ALLOCATION_APPROVED", ...)
    db.session.commit()
    outbox.flush()

Each effect is delivered and committed on its own; a failure is logged
and rolled back without touching the already-committed transition or the
remaining effects.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import func, select, update

from resourcing.models import db
from resourcing.models.notification import Notification
from resourcing.models.user import User, UserRole

logger = logging.getLogger(__name__)


def growth_team_ids() -> list[int]:
    """Ids of every Growth Team member, ascending."""
    stmt = select(User.id).where(User.role == UserRole.GROWTH_TEAM).order_by(User.id)
    return list(db.session.execute(stmt).scalars())


def _dedupe(user_ids: Iterable[int | None]) -> list[int]:
    seen: dict[int, None] = {}
    for uid in user_ids:
        if uid is not None:
            seen.setdefault(uid, None)
    return list(seen)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="SYSTEM", action_url=None,
               metadata=None, commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance.
        """
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            meta=metadata,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, user_ids, title, message="", type="SYSTEM", action_url=None,
                  metadata=None, commit=True):
        """
        Send the same notification to several users, once per distinct user.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for uid in _dedupe(user_ids):
            notif = Notification(
                user_id=uid,
                type=type,
                title=title,
                message=message,
                action_url=action_url,
                meta=metadata,
            )
            db.session.add(notif)
            notifications.append(notif)
        if commit:
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        total = db.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = db.session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        return db.session.execute(stmt).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Returns None when not owned by user."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read."""
        now = datetime.now(timezone.utc)
        result = db.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=now)
        )
        db.session.commit()
        return result.rowcount


# ═══════════════════════════════════════════════════════════════════════════
#  Outbox
# ═══════════════════════════════════════════════════════════════════════════


class Outbox:
    """Deferred notification/email side effects for one workflow transition."""

    def __init__(self) -> None:
        self._effects: list[tuple[str, Callable[[], Any]]] = []

    def __len__(self) -> int:
        return len(self._effects)

    def notify(self, user_ids, *, type, title, message="", action_url=None, metadata=None):
        targets = _dedupe(user_ids)
        if not targets:
            return

        def _deliver():
            NotificationService.broadcast(
                user_ids=targets, type=type, title=title, message=message,
                action_url=action_url, metadata=metadata, commit=False,
            )

        self._effects.append((f"notify:{type}", _deliver))

    def email(self, user, *, template_name, context):
        """Queue a templated email to ``user`` (anything with ``email``/``display_name``)."""
        if user is None or not getattr(user, "email", None):
            return
        to_email, to_name = user.email, user.display_name

        def _deliver():
            from resourcing.services.email_service import EmailService

            EmailService.send_from_template(
                to_email=to_email, to_name=to_name,
                template_name=template_name, context=context,
            )

        self._effects.append((f"email:{template_name}", _deliver))

    def flush(self) -> dict:
        """Deliver every queued effect after the primary commit.

        Returns:
            {"delivered": n, "failed": m}
        """
        delivered = failed = 0
        effects, self._effects = self._effects, []
        for name, effect in effects:
            try:
                effect()
                db.session.commit()
                delivered += 1
            except Exception:
                db.session.rollback()
                failed += 1
                logger.exception("Side effect %s failed; transition already committed", name)
        return {"delivered": delivered, "failed": failed}
