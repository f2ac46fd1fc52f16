"""
Admissions Milestones
Email Service.

Provides email sending capabilities with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_* config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app
from markupsafe import escape

from admissions.models import db
from admissions.models.email_log import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {header_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{call_name}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p style="color: #1e293b;">Hello {applicant_name},</p>
        {body}
        <p style="margin-top: 24px;">
            <a href="{dashboard_link}" style="background: #1e293b; color: white; padding: 8px 16px;
               border-radius: 4px; text-decoration: none;">Open your dashboard</a>
        </p>
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">Automated admissions notification</p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "MILESTONE_APPROVED": {
        "subject": "{call_name}: '{milestone_name}' approved",
        "header_color": "#16a34a",
        "body": """
        <p style="color: #64748b; line-height: 1.6;">
            Your milestone <strong>{milestone_name}</strong> has been approved.
        </p>
        {next_milestone_block}
        """,
    },
    "MILESTONE_REJECTED": {
        "subject": "{call_name}: '{milestone_name}' was not approved",
        "header_color": "#dc2626",
        "body": """
        <p style="color: #64748b; line-height: 1.6;">
            After review, your milestone <strong>{milestone_name}</strong> was not approved.
            The remaining milestones of this call are closed for your application.
        </p>
        """,
    },
    "MILESTONE_NEEDS_CHANGES": {
        "subject": "{call_name}: changes requested on '{milestone_name}'",
        "header_color": "#f59e0b",
        "body": """
        <p style="color: #64748b; line-height: 1.6;">
            The reviewer requested changes to your milestone <strong>{milestone_name}</strong>.
        </p>
        <blockquote style="border-left: 3px solid #f59e0b; margin: 12px 0; padding: 8px 12px; color: #475569;">
            {reviewer_comments}
        </blockquote>
        """,
    },
}


def render_template(template_name: str, context: dict[str, Any]) -> tuple[str, str] | None:
    """Render (subject, html) for a named template; None if unknown.

    Context values are HTML-escaped in the body; blocks prefixed with
    ``next_milestone_block`` are built here so callers pass plain values.
    """
    template = _TEMPLATES.get(template_name)
    if not template:
        return None

    safe = {k: escape(v) if isinstance(v, str) else v for k, v in context.items()}
    next_name = context.get("next_milestone_name")
    safe["next_milestone_block"] = (
        f'<p style="color: #64748b;">Your next milestone, <strong>{escape(next_name)}</strong>, is now open.</p>'
        if next_name else ""
    )

    subject = template["subject"].format_map(_SafeDict(context))
    body = template["body"].format_map(_SafeDict(safe))
    html = _LAYOUT.format_map(_SafeDict({**safe, "body": body, "header_color": template["header_color"]}))
    return subject, html


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
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "milestone",
        application_id: str | None = None,
        progress_id: str | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.

        Returns:
            The EmailLog record for this email (flushed, not committed).
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            category=category,
            status="queued",
            application_id=application_id,
            progress_id=progress_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
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
        category: str = "milestone",
        application_id: str | None = None,
        progress_id: str | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict;
        dashboard_link defaults to FRONTEND_URL/dashboard.
        """
        context = dict(context)
        context.setdefault(
            "dashboard_link",
            f"{current_app.config.get('FRONTEND_URL', '').rstrip('/')}/dashboard",
        )
        rendered = render_template(template_name, context)
        if rendered is None:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject, html_body = rendered
        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            application_id=application_id,
            progress_id=progress_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
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
