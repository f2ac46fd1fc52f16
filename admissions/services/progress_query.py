"""
Progress Query Service: read-only views over the milestone ledger.

get_progress(application_id)
    Ordered rows joined with their milestone definition and reviewer name,
    plus a summary (total / completed / pending / percentage / current).

get_call_overview(call_id)
    One summary per application of a call, for staff dashboards and sync
    reports.
"""

from sqlalchemy import case, func, select

from admissions.core.exceptions import NotFoundError
from admissions.models import db
from admissions.models.directory import Applicant, Application, Call
from admissions.models.milestone import (
    COMPLETED,
    IN_PROGRESS,
    NEEDS_CHANGES,
    REJECTED,
    MilestoneDefinition,
    MilestoneProgress,
)
from admissions.services.directory import reviewer_display_names


def _percentage(completed, total):
    return round(completed / total * 100) if total else 0


def _serialize(row, definition, reviewer_names):
    data = row.to_dict()
    data.update({
        "milestone_name": definition.name,
        "order_index": definition.order_index,
        "required": definition.required,
        "who_can_fill": list(definition.who_can_fill or []),
        "form_id": definition.form_id,
        "due_date": definition.due_date.isoformat() if definition.due_date else None,
        "reviewer_name": reviewer_names.get(row.reviewed_by),
    })
    return data


def get_progress(application_id):
    """Return the ordered progress rows and summary for one application.

    An application with no rows yields an empty list and a zero summary.
    """
    rows = db.session.execute(
        select(MilestoneProgress, MilestoneDefinition)
        .join(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
        .where(MilestoneProgress.application_id == application_id)
        .order_by(MilestoneDefinition.order_index.asc())
    ).all()

    reviewer_names = reviewer_display_names(row.reviewed_by for row, _ in rows)
    progress = [_serialize(row, definition, reviewer_names) for row, definition in rows]

    total = len(progress)
    completed = sum(1 for p in progress if p["status"] == COMPLETED)
    current = next((p for p in progress if p["status"] == IN_PROGRESS), None)

    return {
        "application_id": application_id,
        "progress": progress,
        "summary": {
            "total": total,
            "completed": completed,
            "pending": total - completed,
            "percentage": _percentage(completed, total),
            "current_milestone": current,
        },
    }


def get_call_overview(call_id):
    """Per-application progress counts for a call, one aggregate query."""
    call = db.session.get(Call, call_id)
    if call is None:
        raise NotFoundError(resource="Call", resource_id=call_id)

    milestone_count = db.session.execute(
        select(func.count(MilestoneDefinition.id)).where(MilestoneDefinition.call_id == call_id)
    ).scalar() or 0

    def _count(status):
        return func.coalesce(func.sum(case((MilestoneProgress.status == status, 1), else_=0)), 0)

    current_order = func.min(case(
        (MilestoneProgress.status == IN_PROGRESS, MilestoneDefinition.order_index),
        else_=None,
    ))

    rows = db.session.execute(
        select(
            Application.id,
            Applicant.full_name,
            Applicant.email,
            func.count(MilestoneProgress.id),
            _count(COMPLETED),
            _count(REJECTED),
            _count(NEEDS_CHANGES),
            current_order,
        )
        .join(Applicant, Applicant.id == Application.applicant_id)
        .outerjoin(MilestoneProgress, MilestoneProgress.application_id == Application.id)
        .outerjoin(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
        .where(Application.call_id == call_id)
        .group_by(Application.id, Applicant.full_name, Applicant.email)
        .order_by(Applicant.full_name.asc())
    ).all()

    applications = []
    for app_id, full_name, email, total, completed, rejected, needs_changes, current in rows:
        applications.append({
            "application_id": app_id,
            "applicant_name": full_name,
            "applicant_email": email,
            "total": total,
            "completed": completed,
            "rejected": rejected,
            "needs_changes": needs_changes,
            "missing": max(milestone_count - total, 0),
            "percentage": _percentage(completed, total),
            "current_order_index": current,
        })

    return {
        "call": call.to_dict(),
        "milestone_count": milestone_count,
        "application_count": len(applications),
        "fully_initialized": all(a["missing"] == 0 for a in applications),
        "applications": applications,
    }
