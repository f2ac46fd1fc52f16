"""
Milestone Definition Store: CRUD for the ordered milestones of a call.

order_index is kept contiguous (1..N) per call so that the review engine can
always find the next milestone at order_index + 1:
  - create accepts order_index in 1..max+1 only (duplicate → ConflictError,
    gap → ValidationError)
  - update never moves order_index
  - remove only drops the last milestone of a call, and only while no
    progress row references it

Creating a milestone backfills PENDING progress rows for the call's existing
applications in the same transaction.
"""

import logging
from datetime import timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from admissions.core.exceptions import ConflictError, NotFoundError, ValidationError
from admissions.models import db
from admissions.models.directory import Call
from admissions.models.milestone import (
    DEFAULT_WHO_CAN_FILL,
    MILESTONE_STATUSES,
    MilestoneDefinition,
    MilestoneProgress,
)
from admissions.services.progress_initializer import auto_initialize_on_milestone_create

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 200

# Fields a PATCH may change; order_index is deliberately absent
UPDATABLE_FIELDS = (
    "name", "description", "required", "who_can_fill", "form_id",
    "start_date", "due_date", "status",
)


def _validate_name(name):
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})
    name = name.strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(
            f"name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters",
            details={"name": len(name)},
        )
    return name


def _validate_who_can_fill(value):
    if value is None:
        return list(DEFAULT_WHO_CAN_FILL)
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValidationError(
            "who_can_fill must be a list of role names",
            details={"who_can_fill": value},
        )
    return [v.strip().upper() for v in value]


def _validate_status(value):
    if value not in MILESTONE_STATUSES:
        raise ValidationError(
            f"Invalid milestone status: {value}",
            details={"valid_statuses": sorted(MILESTONE_STATUSES)},
        )
    return value


def _as_utc(value):
    # SQLite hands back naive datetimes for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate_dates(start_date, due_date):
    start_date, due_date = _as_utc(start_date), _as_utc(due_date)
    if start_date and due_date and due_date < start_date:
        raise ValidationError(
            "due_date must not be before start_date",
            details={"start_date": start_date.isoformat(), "due_date": due_date.isoformat()},
        )


def _max_order_index(call_id):
    return db.session.execute(
        select(func.max(MilestoneDefinition.order_index))
        .where(MilestoneDefinition.call_id == call_id)
    ).scalar() or 0


# ═════════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════════


def create_milestone(call_id, name, order_index, required=True, who_can_fill=None,
                     form_id=None, **extra):
    """Create a milestone definition and backfill progress rows for the call.

    Args:
        call_id: Owning call.
        name: Display name (3-200 characters).
        order_index: 1-based position; must be in 1..max+1 for the call.
        required: Whether the milestone must be completed.
        who_can_fill: Role tags; defaults to ["APPLICANT"].
        form_id: Optional linked form definition.
        **extra: description, start_date, due_date, status.

    Returns:
        (MilestoneDefinition, progress_rows_created)

    Raises:
        NotFoundError: call does not exist.
        ConflictError: order_index already taken in the call.
        ValidationError: bad input or a gap in order_index.
    """
    if db.session.get(Call, call_id) is None:
        raise NotFoundError(resource="Call", resource_id=call_id)

    name = _validate_name(name)
    if isinstance(order_index, bool) or not isinstance(order_index, int) or order_index < 1:
        raise ValidationError(
            "order_index must be a positive integer",
            details={"order_index": order_index},
        )

    current_max = _max_order_index(call_id)
    if order_index <= current_max:
        raise ConflictError(resource="MilestoneDefinition", field="order_index", value=str(order_index))
    if order_index > current_max + 1:
        raise ValidationError(
            f"order_index must be contiguous; next available is {current_max + 1}",
            details={"order_index": order_index, "next_order_index": current_max + 1},
        )

    start_date = extra.get("start_date")
    due_date = extra.get("due_date")
    _validate_dates(start_date, due_date)

    milestone = MilestoneDefinition(
        call_id=call_id,
        name=name,
        order_index=order_index,
        required=bool(required),
        who_can_fill=_validate_who_can_fill(who_can_fill),
        form_id=form_id,
        description=extra.get("description"),
        start_date=start_date,
        due_date=due_date,
        status=_validate_status(extra.get("status") or "ACTIVE"),
    )
    db.session.add(milestone)

    try:
        db.session.flush()
        created = auto_initialize_on_milestone_create(milestone.id, call_id, commit=False)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(resource="MilestoneDefinition", field="order_index", value=str(order_index))
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Milestone created: %s (#%d) in call %s, %d progress row(s) backfilled",
        milestone.name, milestone.order_index, call_id, created,
        extra={"milestone_id": milestone.id, "call_id": call_id, "rows_created": created},
    )
    return milestone, created


def update_milestone(milestone_id, data):
    """Apply a partial update. order_index cannot be changed."""
    milestone = get_milestone(milestone_id)

    if "order_index" in data and data["order_index"] != milestone.order_index:
        raise ValidationError(
            "order_index cannot be changed once a milestone exists",
            details={"order_index": milestone.order_index},
        )

    for field in UPDATABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == "name":
            value = _validate_name(value)
        elif field == "who_can_fill":
            value = _validate_who_can_fill(value)
        elif field == "status":
            value = _validate_status(value)
        elif field == "required":
            value = bool(value)
        setattr(milestone, field, value)

    _validate_dates(milestone.start_date, milestone.due_date)

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Milestone updated: %s", milestone_id, extra={"milestone_id": milestone_id})
    return milestone


def remove_milestone(milestone_id):
    """Delete the last milestone of a call when no progress row references it."""
    milestone = get_milestone(milestone_id)

    if milestone.order_index != _max_order_index(milestone.call_id):
        raise ValidationError(
            "Only the last milestone of a call can be removed",
            details={"order_index": milestone.order_index},
        )

    progress_count = db.session.execute(
        select(func.count(MilestoneProgress.id))
        .where(MilestoneProgress.milestone_id == milestone_id)
    ).scalar()
    if progress_count:
        raise ValidationError(
            "Milestone has progress rows and cannot be removed",
            details={"progress_rows": progress_count},
        )

    db.session.delete(milestone)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Milestone removed: %s", milestone_id, extra={"milestone_id": milestone_id})


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_milestone(milestone_id):
    milestone = db.session.get(MilestoneDefinition, milestone_id)
    if milestone is None:
        raise NotFoundError(resource="MilestoneDefinition", resource_id=milestone_id)
    return milestone


def find_by_call(call_id):
    """Definitions of a call ordered by order_index."""
    return list(
        db.session.execute(
            select(MilestoneDefinition)
            .where(MilestoneDefinition.call_id == call_id)
            .order_by(MilestoneDefinition.order_index.asc())
        ).scalars()
    )
