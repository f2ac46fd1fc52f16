"""
Directory lookups used by the milestone core.

The call / application / applicant / user tables are owned by the wider
platform; the milestone services only read from them through these helpers.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from admissions.models import db
from admissions.models.directory import Applicant, Application, Call, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    """Notification target resolved for one application."""

    application_id: str
    email: str
    applicant_name: str
    call_name: str


def resolve_recipient(application_id):
    """Return the applicant's contact details for an application, or None.

    None means there is nobody to notify (missing application or no email);
    callers log and skip rather than fail.
    """
    row = db.session.execute(
        select(Applicant.email, Applicant.full_name, Call.name)
        .select_from(Application)
        .join(Applicant, Applicant.id == Application.applicant_id)
        .join(Call, Call.id == Application.call_id)
        .where(Application.id == application_id)
    ).first()
    if row is None or not row[0]:
        logger.warning("No notification recipient for application %s", application_id,
                       extra={"application_id": application_id})
        return None

    email, full_name, call_name = row
    return Recipient(
        application_id=application_id,
        email=email,
        applicant_name=full_name or email,
        call_name=call_name or "",
    )


def reviewer_display_names(user_ids):
    """Map user id → full name for the given ids (unknown ids are omitted)."""
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    rows = db.session.execute(
        select(User.id, User.full_name).where(User.id.in_(ids))
    ).all()
    return {uid: name for uid, name in rows if name}
