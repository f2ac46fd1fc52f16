"""
Review Engine: applies staff decisions to milestone progress rows.

Decisions:
    APPROVED       row → COMPLETED; next milestone (order_index + 1) PENDING → IN_PROGRESS
    REJECTED       row → REJECTED; every later non-terminal row of the
                   application → REJECTED in one bulk UPDATE
    NEEDS_CHANGES  row → NEEDS_CHANGES; nothing else moves

Transaction contract:
    The reviewed row is read with SELECT ... FOR UPDATE, the row change and
    any cascade/unlock are committed together, and any failure rolls the
    whole unit back. A stale version raises ConcurrencyConflictError.
    Notifications go out only after the commit and cannot fail the review.

Reviewable rows:
    IN_PROGRESS, NEEDS_CHANGES, and COMPLETED rows without a review verdict
    (completed through the form hook). PENDING rows have not been unlocked;
    rows already APPROVED or REJECTED are final.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.orm.exc import StaleDataError

from admissions.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from admissions.models import db
from admissions.models.milestone import (
    CASCADE_REJECTION_NOTE,
    COMPLETED,
    IN_PROGRESS,
    NEEDS_CHANGES,
    PENDING,
    REJECTED,
    MilestoneDefinition,
    MilestoneProgress,
    validate_progress_transition,
)
from admissions.services.directory import resolve_recipient
from admissions.services.notifier import milestone_notifier

logger = logging.getLogger(__name__)

REVIEW_NOTES_MAX_LENGTH = 2000

COMPLETABLE_STATUSES = frozenset({IN_PROGRESS, NEEDS_CHANGES})


class ReviewDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_CHANGES = "NEEDS_CHANGES"

    @classmethod
    def parse(cls, value) -> "ReviewDecision":
        """Coerce a raw value into a decision; unknown values are an invalid transition."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidTransitionError(
                action=str(value),
                reason=f"unknown review decision; expected one of {[d.value for d in cls]}",
            ) from None

    @property
    def target_status(self) -> str:
        return _TARGET_STATUS[self]


_TARGET_STATUS = {
    ReviewDecision.APPROVED: COMPLETED,
    ReviewDecision.REJECTED: REJECTED,
    ReviewDecision.NEEDS_CHANGES: NEEDS_CHANGES,
}

# review_status values that close a row for further review
_FINAL_VERDICTS = frozenset({ReviewDecision.APPROVED.value, ReviewDecision.REJECTED.value})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Private helpers
# ═════════════════════════════════════════════════════════════════════════════


def _lock_progress(progress_id: str) -> MilestoneProgress:
    row = db.session.execute(
        select(MilestoneProgress)
        .where(MilestoneProgress.id == progress_id)
        .with_for_update()
    ).scalar_one_or_none()
    if row is None:
        raise NotFoundError(resource="MilestoneProgress", resource_id=progress_id)
    return row


def _guard_reviewable(row: MilestoneProgress, decision: ReviewDecision) -> None:
    if row.status == REJECTED or row.review_status in _FINAL_VERDICTS:
        raise InvalidTransitionError(
            action=decision.value, current_status=row.status,
            reason=f"row already reviewed ({row.review_status or row.status})",
        )
    if row.status == PENDING:
        raise InvalidTransitionError(
            action=decision.value, current_status=row.status,
            reason="milestone has not been unlocked yet",
        )
    if not validate_progress_transition(row.status, decision.target_status):
        raise InvalidTransitionError(action=decision.value, current_status=row.status)


def _unlock_next(row: MilestoneProgress, milestone: MilestoneDefinition):
    """Open the milestone at order_index + 1 if its row is still PENDING.

    Returns (next_definition or None, unlocked_row_id or None).
    """
    next_def = db.session.execute(
        select(MilestoneDefinition).where(
            MilestoneDefinition.call_id == milestone.call_id,
            MilestoneDefinition.order_index == milestone.order_index + 1,
        )
    ).scalar_one_or_none()
    if next_def is None:
        return None, None

    next_row = db.session.execute(
        select(MilestoneProgress)
        .where(
            MilestoneProgress.application_id == row.application_id,
            MilestoneProgress.milestone_id == next_def.id,
        )
        .with_for_update()
    ).scalar_one_or_none()
    if next_row is None or next_row.status != PENDING:
        return next_def, None

    next_row.status = IN_PROGRESS
    return next_def, next_row.id


def _cascade_rejection(row: MilestoneProgress, milestone: MilestoneDefinition, now: datetime) -> int:
    """Force-reject every later non-terminal row of the application in one UPDATE."""
    later_ids = (
        select(MilestoneDefinition.id)
        .where(
            MilestoneDefinition.call_id == milestone.call_id,
            MilestoneDefinition.order_index > milestone.order_index,
        )
    )
    result = db.session.execute(
        update(MilestoneProgress)
        .where(
            MilestoneProgress.application_id == row.application_id,
            MilestoneProgress.milestone_id.in_(later_ids),
            MilestoneProgress.status.not_in([COMPLETED, REJECTED]),
        )
        .values(
            status=REJECTED,
            review_status=ReviewDecision.REJECTED.value,
            review_notes=func.coalesce(MilestoneProgress.review_notes, CASCADE_REJECTION_NOTE),
            updated_at=now,
            version=MilestoneProgress.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    # Identity-map copies of the cascaded rows are stale after the bulk UPDATE
    db.session.expire_all()
    return result.rowcount or 0


def _commit(progress_id: str) -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent modification of progress row %s", progress_id,
                       extra={"progress_id": progress_id})
        raise ConcurrencyConflictError(resource="MilestoneProgress", resource_id=progress_id) from None
    except Exception:
        db.session.rollback()
        raise


def _send_notification(decision, *, application_id, progress_id, milestone_name,
                       next_milestone_name, notes, notifier):
    """Post-commit notification; failures are logged and swallowed."""
    try:
        recipient = resolve_recipient(application_id)
        if recipient is None:
            return
        link = {"application_id": application_id, "progress_id": progress_id}
        if decision is ReviewDecision.APPROVED:
            notifier.notify_approved(
                recipient.email, recipient.applicant_name, recipient.call_name,
                milestone_name, next_milestone_name, **link,
            )
        elif decision is ReviewDecision.REJECTED:
            notifier.notify_rejected(
                recipient.email, recipient.applicant_name, recipient.call_name,
                milestone_name, **link,
            )
        else:
            notifier.notify_needs_changes(
                recipient.email, recipient.applicant_name, recipient.call_name,
                milestone_name, notes, **link,
            )
    except Exception:
        logger.exception(
            "Notification for progress %s (%s) failed", progress_id, decision.value,
            extra={"progress_id": progress_id, "application_id": application_id,
                   "decision": decision.value},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════


def review_milestone(progress_id, decision, reviewer_id, notes=None, *, notifier=None):
    """Apply a review decision to one progress row.

    Args:
        progress_id: MilestoneProgress id.
        decision: ReviewDecision or its string value.
        reviewer_id: Acting staff user id (recorded as reviewed_by).
        notes: Optional reviewer notes (max 2000 characters).
        notifier: Override for the applicant notifier (defaults to email).

    Returns:
        Serialized row plus ``cascaded`` (rows force-rejected) and
        ``unlocked`` (id of the row opened for the next milestone, or None).

    Raises:
        NotFoundError, InvalidTransitionError, ValidationError,
        ConcurrencyConflictError.
    """
    decision = ReviewDecision.parse(decision)
    if notes is not None and len(notes) > REVIEW_NOTES_MAX_LENGTH:
        raise ValidationError(
            f"review notes must be at most {REVIEW_NOTES_MAX_LENGTH} characters",
            details={"review_notes": len(notes)},
        )
    notifier = notifier or milestone_notifier

    try:
        row = _lock_progress(progress_id)
        _guard_reviewable(row, decision)
        milestone = row.milestone

        now = _utcnow()
        row.review_status = decision.value
        row.reviewed_by = reviewer_id
        row.reviewed_at = now
        if notes is not None:
            row.review_notes = notes

        cascaded = 0
        unlocked = None
        next_def = None
        if decision is ReviewDecision.APPROVED:
            row.mark_completed(now)
            next_def, unlocked = _unlock_next(row, milestone)
        elif decision is ReviewDecision.REJECTED:
            row.status = REJECTED
            db.session.flush()
            cascaded = _cascade_rejection(row, milestone, now)
        else:
            row.status = NEEDS_CHANGES

        application_id = row.application_id
        milestone_name = milestone.name
        next_milestone_name = next_def.name if unlocked and next_def else None
    except StaleDataError:
        db.session.rollback()
        raise ConcurrencyConflictError(resource="MilestoneProgress", resource_id=progress_id) from None
    except Exception:
        db.session.rollback()
        raise

    _commit(progress_id)

    logger.info(
        "Milestone review: %s → %s (cascaded=%d, unlocked=%s)",
        progress_id, decision.value, cascaded, unlocked,
        extra={"progress_id": progress_id, "application_id": application_id,
               "decision": decision.value, "cascaded": cascaded},
    )

    _send_notification(
        decision,
        application_id=application_id,
        progress_id=progress_id,
        milestone_name=milestone_name,
        next_milestone_name=next_milestone_name,
        notes=notes,
        notifier=notifier,
    )

    result = row.to_dict()
    result["cascaded"] = cascaded
    result["unlocked"] = unlocked
    return result


def complete_from_submission(progress_id, completed_by, form_submission_id=None):
    """Mark the current milestone COMPLETED after its form was submitted.

    Only IN_PROGRESS or NEEDS_CHANGES rows can be completed. The row keeps
    no review verdict, so it can still be reviewed afterwards; the next
    milestone stays locked until a reviewer approves.
    """
    try:
        row = _lock_progress(progress_id)
        if row.status not in COMPLETABLE_STATUSES:
            raise InvalidTransitionError(
                action="COMPLETE", current_status=row.status,
                reason="only the current milestone can be completed",
            )
        row.mark_completed()
        row.completed_by = completed_by
        if form_submission_id is not None:
            row.form_submission_id = form_submission_id
    except Exception:
        db.session.rollback()
        raise

    _commit(progress_id)

    logger.info(
        "Milestone completed from submission: %s by %s", progress_id, completed_by,
        extra={"progress_id": progress_id, "application_id": row.application_id,
               "event_type": "form_submission"},
    )
    return row.to_dict()
