"""
Admissions Milestones
Milestone domain models.

Models:
    - MilestoneDefinition: ordered checkpoint of a call (read-only for the review engine)
    - MilestoneProgress:   per-(application, milestone) ledger row

Architecture:
    Call ──1:N──▶ MilestoneDefinition ──1:N──▶ MilestoneProgress ◀──N:1── Application

Lifecycle states (MilestoneProgress.status):
    PENDING → IN_PROGRESS → COMPLETED | REJECTED | NEEDS_CHANGES
    NEEDS_CHANGES → IN_PROGRESS   (external resubmission)
    PENDING | IN_PROGRESS | NEEDS_CHANGES → REJECTED   (cascade rejection)

COMPLETED and REJECTED are terminal for gating purposes.
"""

import uuid
from datetime import datetime, timezone

from admissions.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
REJECTED = "REJECTED"
NEEDS_CHANGES = "NEEDS_CHANGES"

PROGRESS_STATUSES = {PENDING, IN_PROGRESS, COMPLETED, REJECTED, NEEDS_CHANGES}

TERMINAL_STATUSES = frozenset({COMPLETED, REJECTED})

REVIEW_STATUSES = {"APPROVED", "REJECTED", "NEEDS_CHANGES"}

MILESTONE_STATUSES = {"ACTIVE", "PENDING", "INACTIVE"}

DEFAULT_WHO_CAN_FILL = ["APPLICANT"]

CASCADE_REJECTION_NOTE = "Blocked by rejection of an earlier milestone"


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

PROGRESS_TRANSITIONS = {
    PENDING:       [IN_PROGRESS, REJECTED],
    IN_PROGRESS:   [COMPLETED, REJECTED, NEEDS_CHANGES],
    NEEDS_CHANGES: [IN_PROGRESS, COMPLETED, REJECTED, NEEDS_CHANGES],
    # A COMPLETED row without a review verdict may still be reviewed. Sending it
    # to NEEDS_CHANGES keeps completed_at: it records the first completion only.
    COMPLETED:     [COMPLETED, REJECTED, NEEDS_CHANGES],
    REJECTED:      [],
}


def validate_progress_transition(old_status, new_status):
    """Return True if MilestoneProgress status transition is valid."""
    return new_status in PROGRESS_TRANSITIONS.get(old_status, [])


class MilestoneDefinition(db.Model):
    """
    Named, ordered checkpoint within a call.

    order_index starts at 1 and is contiguous per call; contiguity is enforced
    in services/milestone_store.py so that "next milestone" is always
    order_index + 1.
    """

    __tablename__ = "milestones"
    __table_args__ = (
        db.UniqueConstraint("call_id", "order_index", name="uq_milestones_call_order"),
        db.Index("ix_milestones_call", "call_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    call_id = db.Column(
        db.String(36), db.ForeignKey("calls.id", ondelete="CASCADE"), nullable=False,
    )
    form_id = db.Column(db.String(36), nullable=True, comment="Linked form definition (optional)")
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=1)
    required = db.Column(db.Boolean, nullable=False, default=True)
    who_can_fill = db.Column(
        db.JSON, nullable=False, default=lambda: list(DEFAULT_WHO_CAN_FILL),
        comment="Role tags allowed to fill the milestone form",
    )
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE", comment="ACTIVE | PENDING | INACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "call_id": self.call_id,
            "form_id": self.form_id,
            "name": self.name,
            "description": self.description,
            "order_index": self.order_index,
            "required": self.required,
            "who_can_fill": list(self.who_can_fill or []),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MilestoneDefinition {self.order_index}: {self.name}>"


class MilestoneProgress(db.Model):
    """
    Ledger row: one application's advancement through one milestone.

    Business rules:
    - (application_id, milestone_id) is unique; rows are never deleted.
    - completed_at is written once, the first time the row reaches COMPLETED.
    - version is the optimistic-concurrency counter (SQLAlchemy version_id_col);
      bulk cascade updates bump it explicitly.
    """

    __tablename__ = "milestone_progress"
    __table_args__ = (
        db.UniqueConstraint("application_id", "milestone_id", name="uq_progress_application_milestone"),
        db.Index("ix_progress_application", "application_id"),
        db.Index("ix_progress_milestone", "milestone_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    milestone_id = db.Column(
        db.String(36), db.ForeignKey("milestones.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(
        db.String(20), nullable=False, default=PENDING,
        comment="PENDING | IN_PROGRESS | COMPLETED | REJECTED | NEEDS_CHANGES",
    )

    # Review
    review_status = db.Column(db.String(20), nullable=True, comment="APPROVED | REJECTED | NEEDS_CHANGES")
    review_notes = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Completion
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(36), nullable=True)
    form_submission_id = db.Column(db.String(36), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    milestone = db.relationship("MilestoneDefinition")

    __mapper_args__ = {"version_id_col": version}

    def mark_completed(self, when=None):
        """Move to COMPLETED; completed_at is only written the first time."""
        self.status = COMPLETED
        if self.completed_at is None:
            self.completed_at = when or _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "milestone_id": self.milestone_id,
            "status": self.status,
            "review_status": self.review_status,
            "review_notes": self.review_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
            "form_submission_id": self.form_submission_id,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<MilestoneProgress {self.id}: app={self.application_id} status={self.status}>"
