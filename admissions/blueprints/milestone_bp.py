"""
Milestone Blueprint: definitions, progress ledger and reviews.

All routes are under /api/v1/milestones.

Endpoints:
    POST   /milestones                                  create definition (201)
    GET    /milestones/call/<call_id>                   list definitions of a call
    GET    /milestones/<milestone_id>                   get definition
    PATCH  /milestones/<milestone_id>                   update definition
    DELETE /milestones/<milestone_id>                   remove last definition (204)

    GET    /milestones/progress/<application_id>        progress + summary
    POST   /milestones/progress/initialize              Body: { application_id, call_id }
    PATCH  /milestones/progress/<progress_id>/review    Body: { review_status, review_notes?, reviewed_by }
    POST   /milestones/progress/<progress_id>/complete  Body: { completed_by, form_submission_id? }
    POST   /milestones/sync-progress/<call_id>          backfill missing rows → { created }
    GET    /milestones/call/<call_id>/progress          per-application overview

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - NO db.session calls here; all writes owned by the services.
    - Service exceptions map to HTTP through the error handlers below.
"""

import logging

from flask import Blueprint, jsonify, request

from admissions.core.exceptions import (
    ConcurrencyConflictError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from admissions.services import milestone_store, progress_initializer, progress_query, review_engine
from admissions.services.review_engine import REVIEW_NOTES_MAX_LENGTH, ReviewDecision
from admissions.utils.errors import E, api_error
from admissions.utils.helpers import parse_datetime_input

logger = logging.getLogger(__name__)

milestone_bp = Blueprint("milestone", __name__, url_prefix="/api/v1/milestones")

VALID_DECISIONS = [d.value for d in ReviewDecision]

_DATE_FIELDS = ("start_date", "due_date")


# ═════════════════════════════════════════════════════════════════════════
# Error handlers
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@milestone_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@milestone_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})


@milestone_bp.errorhandler(InvalidTransitionError)
def _handle_transition(error: InvalidTransitionError):
    if error.current_status is None:
        return api_error(E.VALIDATION_INVALID, str(error),
                         details={"valid_decisions": VALID_DECISIONS})
    return api_error(E.CONFLICT_STATE, str(error),
                     details={"current_status": error.current_status})


@milestone_bp.errorhandler(ConcurrencyConflictError)
def _handle_concurrency(error: ConcurrencyConflictError):
    return api_error(E.CONFLICT_CONCURRENT, str(error))


@milestone_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in milestone_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _parse_dates(data):
    """Return (parsed_fields, err_response)."""
    parsed = {}
    for field in _DATE_FIELDS:
        if field not in data:
            continue
        try:
            parsed[field] = parse_datetime_input(data[field])
        except ValueError as exc:
            return None, api_error(E.VALIDATION_INVALID, f"{field}: {exc}")
    return parsed, None


# ═════════════════════════════════════════════════════════════════════════
# Milestone definitions
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.route("", methods=["POST"])
def create_milestone():
    """Create a milestone definition; backfills progress rows for the call."""
    data = request.get_json(silent=True) or {}

    call_id = data.get("call_id")
    if not call_id:
        return api_error(E.VALIDATION_REQUIRED, "Field 'call_id' is required.")
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required.")
    if data.get("order_index") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'order_index' is required.")

    dates, err = _parse_dates(data)
    if err:
        return err

    milestone, created = milestone_store.create_milestone(
        call_id=call_id,
        name=data["name"],
        order_index=data["order_index"],
        required=data.get("required", True),
        who_can_fill=data.get("who_can_fill"),
        form_id=data.get("form_id"),
        description=data.get("description"),
        status=data.get("status"),
        **dates,
    )
    body = milestone.to_dict()
    body["progress_created"] = created
    return jsonify(body), 201


@milestone_bp.route("/call/<call_id>", methods=["GET"])
def list_milestones(call_id):
    milestones = milestone_store.find_by_call(call_id)
    return jsonify({"items": [m.to_dict() for m in milestones], "total": len(milestones)}), 200


@milestone_bp.route("/<milestone_id>", methods=["GET"])
def get_milestone(milestone_id):
    return jsonify(milestone_store.get_milestone(milestone_id).to_dict()), 200


@milestone_bp.route("/<milestone_id>", methods=["PATCH"])
def update_milestone(milestone_id):
    data = request.get_json(silent=True) or {}
    dates, err = _parse_dates(data)
    if err:
        return err
    milestone = milestone_store.update_milestone(milestone_id, {**data, **dates})
    return jsonify(milestone.to_dict()), 200


@milestone_bp.route("/<milestone_id>", methods=["DELETE"])
def delete_milestone(milestone_id):
    milestone_store.remove_milestone(milestone_id)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Progress ledger
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.route("/progress/<application_id>", methods=["GET"])
def get_progress(application_id):
    """Ordered progress rows and summary for an application."""
    return jsonify(progress_query.get_progress(application_id)), 200


@milestone_bp.route("/progress/initialize", methods=["POST"])
def initialize_progress():
    data = request.get_json(silent=True) or {}
    application_id = data.get("application_id")
    call_id = data.get("call_id")
    if not application_id or not call_id:
        return api_error(E.VALIDATION_REQUIRED, "Fields 'application_id' and 'call_id' are required.")

    result = progress_initializer.initialize_for_application(application_id, call_id)
    return jsonify(result), 201


@milestone_bp.route("/progress/<progress_id>/review", methods=["PATCH"])
def review_progress(progress_id):
    """Apply APPROVED / REJECTED / NEEDS_CHANGES to a progress row.

    Returns 200 with the updated row, ``cascaded`` and ``unlocked``;
    400 on input error, 404 unknown row, 409 when the row's state forbids
    the decision or it was modified concurrently.
    """
    data = request.get_json(silent=True) or {}
    decision = data.get("review_status") or data.get("decision") or ""
    if not isinstance(decision, str):
        return api_error(
            E.VALIDATION_INVALID, "Field 'review_status' must be a string.",
            details={"valid_decisions": VALID_DECISIONS},
        )
    decision = decision.strip()

    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "Field 'review_status' is required.")
    if decision not in VALID_DECISIONS:
        return api_error(
            E.VALIDATION_INVALID, f"Invalid review_status '{decision}'.",
            details={"valid_decisions": VALID_DECISIONS},
        )

    reviewer_id = data.get("reviewed_by") or data.get("reviewer_id")
    if not reviewer_id:
        return api_error(E.VALIDATION_REQUIRED, "Field 'reviewed_by' is required.")

    notes = data.get("review_notes")
    if notes is not None and not isinstance(notes, str):
        return api_error(E.VALIDATION_INVALID, "Field 'review_notes' must be a string.")
    if notes is not None and len(notes) > REVIEW_NOTES_MAX_LENGTH:
        return api_error(
            E.VALIDATION_INVALID,
            f"Field 'review_notes' must be at most {REVIEW_NOTES_MAX_LENGTH} characters.",
        )

    result = review_engine.review_milestone(progress_id, ReviewDecision(decision), reviewer_id, notes)
    return jsonify(result), 200


@milestone_bp.route("/progress/<progress_id>/complete", methods=["POST"])
def complete_progress(progress_id):
    """Form-submission hook: mark the current milestone COMPLETED."""
    data = request.get_json(silent=True) or {}
    completed_by = data.get("completed_by")
    if not completed_by:
        return api_error(E.VALIDATION_REQUIRED, "Field 'completed_by' is required.")

    row = review_engine.complete_from_submission(
        progress_id, completed_by, form_submission_id=data.get("form_submission_id"),
    )
    return jsonify(row), 200


@milestone_bp.route("/sync-progress/<call_id>", methods=["POST"])
def sync_progress(call_id):
    created = progress_initializer.sync_for_call(call_id)
    return jsonify({"created": created}), 200


@milestone_bp.route("/call/<call_id>/progress", methods=["GET"])
def call_overview(call_id):
    return jsonify(progress_query.get_call_overview(call_id)), 200
