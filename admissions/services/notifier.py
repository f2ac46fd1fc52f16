"""
Admissions Milestones
Milestone Notifier: applicant emails for review outcomes.

Dispatch is fire-and-forget and always happens after the review transaction
has committed:
    - NOTIFY_ASYNC=True  → daemon thread with its own app context
    - NOTIFY_ASYNC=False → inline (tests), still exception-isolated

A failed notification is logged and recorded in EmailLog; it never reaches
the caller and never affects the committed progress rows.
"""

import logging
import threading

from flask import current_app

from admissions.models import db
from admissions.services.email_service import EmailService

logger = logging.getLogger(__name__)

TEMPLATE_APPROVED = "MILESTONE_APPROVED"
TEMPLATE_REJECTED = "MILESTONE_REJECTED"
TEMPLATE_NEEDS_CHANGES = "MILESTONE_NEEDS_CHANGES"


class MilestoneNotifier:
    """Sends milestone review outcome emails to applicants."""

    def notify_approved(self, recipient, applicant_name, call_name, milestone_name,
                        next_milestone_name=None, **link):
        return self._dispatch(TEMPLATE_APPROVED, recipient, applicant_name, {
            "call_name": call_name,
            "milestone_name": milestone_name,
            "next_milestone_name": next_milestone_name,
        }, **link)

    def notify_rejected(self, recipient, applicant_name, call_name, milestone_name, **link):
        return self._dispatch(TEMPLATE_REJECTED, recipient, applicant_name, {
            "call_name": call_name,
            "milestone_name": milestone_name,
        }, **link)

    def notify_needs_changes(self, recipient, applicant_name, call_name, milestone_name,
                             reviewer_notes, **link):
        return self._dispatch(TEMPLATE_NEEDS_CHANGES, recipient, applicant_name, {
            "call_name": call_name,
            "milestone_name": milestone_name,
            "reviewer_comments": reviewer_notes or "",
        }, **link)

    # ── Internal ──────────────────────────────────────────────────────────

    def _dispatch(self, template_name, recipient, applicant_name, context,
                  application_id=None, progress_id=None):
        """Deliver now or hand off to a background thread. Never raises."""
        context = {**context, "applicant_name": applicant_name}
        try:
            app = current_app._get_current_object()
            if app.config.get("NOTIFY_ASYNC", True):
                t = threading.Thread(
                    target=self._deliver_in_background,
                    args=(app, template_name, recipient, applicant_name, context,
                          application_id, progress_id),
                    daemon=True,
                )
                t.start()
                return t
            self._deliver(template_name, recipient, applicant_name, context,
                          application_id, progress_id)
        except Exception:
            logger.exception(
                "Milestone notification %s to %s failed", template_name, recipient,
                extra={"application_id": application_id, "progress_id": progress_id,
                       "event_type": template_name},
            )
        return None

    def _deliver_in_background(self, app, *args):
        with app.app_context():
            try:
                self._deliver(*args)
            except Exception:
                logger.exception("Background milestone notification failed",
                                 extra={"event_type": args[0]})

    def _deliver(self, template_name, recipient, applicant_name, context,
                 application_id, progress_id):
        try:
            log = EmailService.send_from_template(
                to_email=recipient,
                to_name=applicant_name,
                template_name=template_name,
                context=context,
                application_id=application_id,
                progress_id=progress_id,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Milestone notification %s → %s (%s)",
            template_name, recipient, log.status if log else "no template",
            extra={"application_id": application_id, "progress_id": progress_id,
                   "event_type": template_name},
        )
        return log


milestone_notifier = MilestoneNotifier()
