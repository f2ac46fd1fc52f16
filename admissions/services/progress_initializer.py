"""
Progress Initializer: creates and backfills milestone_progress rows.

Three entry points keep the ledger complete:
  - initialize_for_application: an application joins a call
  - auto_initialize_on_milestone_create: staff adds a milestone mid-cycle
  - sync_for_call / sync_all_calls: explicit reconciliation sweep

Rules:
  - Rows are inserted with INSERT ... ON CONFLICT DO NOTHING keyed on
    (application_id, milestone_id), so concurrent callers never duplicate
    rows and never overwrite an existing row.
  - Only initialize_for_application seeds an IN_PROGRESS row, and only when
    the application has no row already IN_PROGRESS or COMPLETED.
  - Rows created by the sweep or by a new milestone are always PENDING.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from admissions.core.exceptions import NotFoundError, ValidationError
from admissions.models import db
from admissions.models.directory import Application, Call
from admissions.models.milestone import (
    COMPLETED,
    IN_PROGRESS,
    PENDING,
    MilestoneDefinition,
    MilestoneProgress,
)

logger = logging.getLogger(__name__)

# Rows per INSERT statement (SQLite caps bound parameters per statement)
_INSERT_CHUNK = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Private helpers ────────────────────────────────────────────────────────────


def _new_row(application_id: str, milestone_id: str, status: str, now: datetime) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "application_id": application_id,
        "milestone_id": milestone_id,
        "status": status,
        "version": 1,
        "created_at": now,
        "updated_at": now,
    }


def _insert_if_absent(rows: list[dict]) -> int:
    """Insert progress rows, skipping any (application, milestone) pair that exists.

    Returns the number of rows actually inserted.
    """
    if not rows:
        return 0

    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return _insert_one_by_one(rows)

    table = MilestoneProgress.__table__
    created = 0
    for start in range(0, len(rows), _INSERT_CHUNK):
        chunk = rows[start:start + _INSERT_CHUNK]
        stmt = (
            insert(table)
            .values(chunk)
            .on_conflict_do_nothing(index_elements=["application_id", "milestone_id"])
        )
        result = db.session.execute(stmt)
        created += max(result.rowcount or 0, 0)
    return created


def _insert_one_by_one(rows: list[dict]) -> int:
    """Portable fallback: one savepoint per row, duplicates swallowed."""
    created = 0
    table = MilestoneProgress.__table__
    for row in rows:
        try:
            with db.session.begin_nested():
                db.session.execute(table.insert().values(**row))
            created += 1
        except IntegrityError:
            logger.debug(
                "Progress row already exists app=%s milestone=%s",
                row["application_id"], row["milestone_id"],
            )
    return created


def _ordered_definitions(call_id: str) -> list[MilestoneDefinition]:
    return list(
        db.session.execute(
            select(MilestoneDefinition)
            .where(MilestoneDefinition.call_id == call_id)
            .order_by(MilestoneDefinition.order_index.asc())
        ).scalars()
    )


def _commit_or_rollback() -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# ── Public API ─────────────────────────────────────────────────────────────────


def initialize_for_application(application_id: str, call_id: str) -> dict:
    """Create the missing progress rows for one application.

    The lowest-order_index row among the newly inserted ones is seeded
    IN_PROGRESS unless the application already holds a row IN_PROGRESS or
    COMPLETED; every other new row is PENDING. Safe to call repeatedly.

    Returns:
        {"created": n} with the number of rows inserted.

    Raises:
        NotFoundError: application or call does not exist.
        ValidationError: the application does not belong to the call.
    """
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError(resource="Application", resource_id=application_id)
    if db.session.get(Call, call_id) is None:
        raise NotFoundError(resource="Call", resource_id=call_id)
    if application.call_id != call_id:
        raise ValidationError(
            "Application does not belong to this call.",
            details={"application_id": application_id, "call_id": call_id},
        )

    definitions = _ordered_definitions(call_id)
    existing = dict(
        db.session.execute(
            select(MilestoneProgress.milestone_id, MilestoneProgress.status)
            .where(MilestoneProgress.application_id == application_id)
        ).all()
    )
    has_position = any(status in (IN_PROGRESS, COMPLETED) for status in existing.values())

    now = _utcnow()
    rows = []
    for definition in definitions:
        if definition.id in existing:
            continue
        seed_current = not rows and not has_position
        rows.append(_new_row(application_id, definition.id, IN_PROGRESS if seed_current else PENDING, now))

    created = _insert_if_absent(rows)
    _commit_or_rollback()

    logger.info(
        "Progress initialized: %d row(s) created for application %s",
        created, application_id,
        extra={"application_id": application_id, "call_id": call_id, "rows_created": created},
    )
    return {"created": created}


def auto_initialize_on_milestone_create(milestone_id: str, call_id: str, *, commit: bool = True) -> int:
    """Create a PENDING row at a newly defined milestone for every application of the call.

    Other rows of those applications are left untouched. With commit=False
    the inserts join the caller's transaction (milestone creation).

    Returns:
        Number of rows created.
    """
    milestone = db.session.get(MilestoneDefinition, milestone_id)
    if milestone is None:
        raise NotFoundError(resource="MilestoneDefinition", resource_id=milestone_id)
    if milestone.call_id != call_id:
        raise ValidationError(
            "Milestone does not belong to this call.",
            details={"milestone_id": milestone_id, "call_id": call_id},
        )

    application_ids = db.session.execute(
        select(Application.id).where(Application.call_id == call_id)
    ).scalars().all()

    now = _utcnow()
    rows = [_new_row(app_id, milestone_id, PENDING, now) for app_id in application_ids]
    created = _insert_if_absent(rows)
    if commit:
        _commit_or_rollback()

    logger.info(
        "Milestone %s backfilled: %d row(s) created",
        milestone_id, created,
        extra={"milestone_id": milestone_id, "call_id": call_id, "rows_created": created},
    )
    return created


def sync_for_call(call_id: str) -> int:
    """Ensure every (application, milestone) pair of the call has a row.

    Created rows are PENDING regardless of position; the sweep never infers
    the current milestone. Existing rows are not modified.

    Returns:
        Number of rows created.
    """
    if db.session.get(Call, call_id) is None:
        raise NotFoundError(resource="Call", resource_id=call_id)

    application_ids = db.session.execute(
        select(Application.id).where(Application.call_id == call_id)
    ).scalars().all()
    milestone_ids = [d.id for d in _ordered_definitions(call_id)]

    existing_pairs = set(
        db.session.execute(
            select(MilestoneProgress.application_id, MilestoneProgress.milestone_id)
            .join(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
            .where(MilestoneDefinition.call_id == call_id)
        ).all()
    )

    now = _utcnow()
    rows = [
        _new_row(app_id, ms_id, PENDING, now)
        for app_id in application_ids
        for ms_id in milestone_ids
        if (app_id, ms_id) not in existing_pairs
    ]
    created = _insert_if_absent(rows)
    _commit_or_rollback()

    logger.info(
        "Progress sync for call %s: %d row(s) created (%d applications × %d milestones)",
        call_id, created, len(application_ids), len(milestone_ids),
        extra={"call_id": call_id, "rows_created": created, "event_type": "progress_sync"},
    )
    return created


def sync_all_calls() -> dict:
    """Run sync_for_call over every call.

    Returns:
        {"calls": N, "created": total, "per_call": {call_id: created}}
    """
    call_ids = db.session.execute(select(Call.id).order_by(Call.created_at)).scalars().all()
    per_call = {}
    for call_id in call_ids:
        per_call[call_id] = sync_for_call(call_id)

    total = sum(per_call.values())
    logger.info("Progress sync across %d call(s): %d row(s) created", len(call_ids), total)
    return {"calls": len(call_ids), "created": total, "per_call": per_call}
