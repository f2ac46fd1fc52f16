"""
Milestone notifier + email service tests.

Covers template rendering, log-only vs SMTP delivery, failure recording,
and the background-thread dispatch path.
"""

import smtplib
from unittest.mock import patch

from admissions.models.email_log import EmailLog
from admissions.services.email_service import EmailService, render_template
from admissions.services.notifier import MilestoneNotifier


class TestTemplates:
    def test_approved_mentions_next_milestone(self):
        subject, html = render_template("MILESTONE_APPROVED", {
            "call_name": "Doctoral Call 2026",
            "applicant_name": "Ana",
            "milestone_name": "Intake",
            "next_milestone_name": "Docs",
            "dashboard_link": "http://localhost:5173/dashboard",
        })
        assert subject == "Doctoral Call 2026: 'Intake' approved"
        assert "<strong>Docs</strong>" in html
        assert "http://localhost:5173/dashboard" in html

    def test_approved_without_next(self):
        _subject, html = render_template("MILESTONE_APPROVED", {
            "call_name": "C", "applicant_name": "Ana", "milestone_name": "Intake",
            "next_milestone_name": None,
        })
        assert "is now open" not in html

    def test_reviewer_comments_are_escaped(self):
        _subject, html = render_template("MILESTONE_NEEDS_CHANGES", {
            "call_name": "C", "applicant_name": "Ana", "milestone_name": "Docs",
            "reviewer_comments": "<script>alert(1)</script>",
        })
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_unknown_template(self):
        assert render_template("NOPE", {}) is None


class TestEmailService:
    def test_log_only_mode(self, app):
        log = EmailService.send_from_template(
            to_email="ana@uni.test", to_name="Ana", template_name="MILESTONE_REJECTED",
            context={"call_name": "C", "applicant_name": "Ana", "milestone_name": "Docs"},
            application_id="app-1", progress_id="prog-1",
        )
        assert log.status == "sent"
        assert log.subject == "C: 'Docs' was not approved"
        assert log.progress_id == "prog-1"

    def test_smtp_failure_is_recorded(self, app):
        app.config["MAIL_SERVER"] = "smtp.invalid"
        try:
            with patch("admissions.services.email_service.smtplib.SMTP",
                       side_effect=smtplib.SMTPConnectError(421, "down")):
                log = EmailService.send(
                    to_email="ana@uni.test", subject="s", html_body="<p>x</p>",
                )
        finally:
            app.config["MAIL_SERVER"] = None
        assert log.status == "failed"
        assert "down" in log.error_message


class TestMilestoneNotifier:
    def test_inline_delivery_commits_log(self):
        notifier = MilestoneNotifier()

        notifier.notify_needs_changes(
            "ana@uni.test", "Ana", "Doctoral Call 2026", "Docs", "Please sign",
            application_id="app-1", progress_id="prog-1",
        )

        log = EmailLog.query.filter_by(progress_id="prog-1").one()
        assert log.template_name == "MILESTONE_NEEDS_CHANGES"
        assert log.recipient_name == "Ana"

    def test_delivery_error_is_swallowed(self):
        notifier = MilestoneNotifier()
        with patch.object(EmailService, "send_from_template", side_effect=RuntimeError("boom")):
            assert notifier.notify_rejected("ana@uni.test", "Ana", "C", "Docs") is None
        assert EmailLog.query.count() == 0

    def test_async_dispatch_uses_thread(self, app):
        notifier = MilestoneNotifier()
        app.config["NOTIFY_ASYNC"] = True
        try:
            with patch.object(MilestoneNotifier, "_deliver_in_background") as background:
                thread = notifier.notify_approved("ana@uni.test", "Ana", "C", "Intake", "Docs")
                thread.join(timeout=5)
        finally:
            app.config["NOTIFY_ASYNC"] = False
        background.assert_called_once()
        assert background.call_args.args[1] == "MILESTONE_APPROVED"
