"""
Resource Allocation Platform
Email Service.

Renders allocation-workflow templates and sends them over SMTP.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_* config keys (MAIL_SERVER, MAIL_PORT, ...)
    - Falls back to logging-only mode when MAIL_SERVER is unset
    - All emails are recorded in EmailLog for audit

Callers never send directly from a workflow transition; they queue an
email on an ``Outbox`` which calls ``send_from_template`` after commit.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from resourcing.models import db
from resourcing.models.scheduling import EmailLog, EmailStatus

logger = logging.getLogger(__name__)

# Context keys whose values are already-built HTML (e.g. table rows)
_HTML_FRAGMENTS = frozenset({"week_rows"})


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
        <p><a href="{action_url}" style="color: #2563eb;">Open in Resource Planner</a></p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "phase_allocation_decision": {
        "subject": "[Resource Planner] Phase allocation {status_label}: {phase_name}",
        "heading": "Phase allocation {status_label}",
        "body": """
        <p>Hi {consultant_name},</p>
        <p>Your allocation of <strong>{total_hours}h</strong> on <strong>{phase_name}</strong>
        ({project_title}) has been {status_label}.</p>
        <p>{reason_line}</p>
        """,
        "text": "Hi {consultant_name}, your allocation of {total_hours}h on {phase_name} "
                "({project_title}) has been {status_label}. {reason_line}",
    },
    "weekly_allocation_decision": {
        "subject": "[Resource Planner] Weekly plan {status_label}: {phase_name}",
        "heading": "Weekly plan {status_label}",
        "body": """
        <p>Hi {consultant_name},</p>
        <p>{summary}</p>
        <table style="width: 100%; border-collapse: collapse; margin: 12px 0;">
            <tr style="background: #e2e8f0;">
                <th style="padding: 8px; text-align: left;">Week</th>
                <th style="padding: 8px; text-align: right;">Proposed</th>
                <th style="padding: 8px; text-align: right;">Approved</th>
                <th style="padding: 8px; text-align: left;">Status</th>
            </tr>
            {week_rows}
        </table>
        """,
        "text": "Hi {consultant_name}, {summary}\n{week_lines}",
    },
    "hour_change_decision": {
        "subject": "[Resource Planner] Hour change request {status_label}",
        "heading": "Hour change request {status_label}",
        "body": """
        <p>{summary}</p>
        <p>{reason_line}</p>
        """,
        "text": "{summary} {reason_line}",
    },
    "allocation_expired": {
        "subject": "[Resource Planner] {unplanned_hours}h unplanned on {phase_name}",
        "heading": "Expired allocation needs action",
        "body": """
        <p>The phase <strong>{phase_name}</strong> ({project_title}) has ended with
        <strong>{unplanned_hours}h</strong> of {consultant_name}'s allocation unplanned.</p>
        <p>The Product Manager can forfeit these hours or reallocate them to another phase.</p>
        """,
        "text": "The phase {phase_name} ({project_title}) ended with {unplanned_hours}h of "
                "{consultant_name}'s allocation unplanned.",
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def render(cls, template_name: str, context: dict[str, Any]) -> tuple[str, str, str] | None:
        """Render a template into (subject, html, text); None when unknown."""
        template = cls.get_template(template_name)
        if not template:
            return None
        ctx = _SafeDict(context)
        ctx.setdefault("action_url", current_app.config.get("APP_BASE_URL", ""))
        html_ctx = _SafeDict({
            key: value if key in _HTML_FRAGMENTS else html.escape(str(value))
            for key, value in ctx.items()
        })
        subject = template["subject"].format_map(ctx)
        html_body = _LAYOUT.format_map(_SafeDict(
            heading=template["heading"].format_map(html_ctx),
            body=template["body"].format_map(html_ctx),
            action_url=html_ctx["action_url"],
        ))
        text_body = template["text"].format_map(ctx)
        return subject, html_body, text_body

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        template_name: str | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.

        Returns:
            The EmailLog record for this email.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject[:500],
            template_name=template_name,
            status=EmailStatus.QUEUED,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.mark_sent()
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject,
                           html_body=html_body, text_body=text_body)
            log.mark_sent()
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.mark_failed(exc)
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict.
        """
        rendered = cls.render(template_name, context)
        if rendered is None:
            logger.warning("Email template not found: %s", template_name)
            return None
        subject, html_body, text_body = rendered
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            template_name=template_name,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str, text_body: str | None) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
