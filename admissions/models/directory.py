"""
Admissions Milestones
Application / identity directory models.

Models:
    - Call:        recruitment cycle that owns an ordered set of milestones
    - Applicant:   person applying (name + email used for notifications)
    - Application: one applicant's submission within one call
    - User:        staff member (reviewer / admin); display name for review trail

These tables are owned by the surrounding platform. The milestone core only
reads them (see services/directory.py).
"""

import uuid
from datetime import datetime, timezone

from admissions.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

CALL_STATUSES = {"DRAFT", "OPEN", "CLOSED", "ARCHIVED"}

USER_ROLES = {"ADMIN", "REVIEWER", "APPLICANT"}


class Call(db.Model):
    """Recruitment / application cycle (convocatoria)."""

    __tablename__ = "calls"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    year = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default="OPEN", comment="DRAFT | OPEN | CLOSED | ARCHIVED")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    applications = db.relationship("Application", back_populates="call", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "year": self.year,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Call {self.id}: {self.name}>"


class Applicant(db.Model):
    __tablename__ = "applicants"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    full_name = db.Column(db.String(200), nullable=True)
    email = db.Column(db.String(200), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<Applicant {self.id}: {self.email}>"


class Application(db.Model):
    """An applicant's submission within a call."""

    __tablename__ = "applications"
    __table_args__ = (
        db.Index("ix_applications_call", "call_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    call_id = db.Column(
        db.String(36), db.ForeignKey("calls.id", ondelete="CASCADE"), nullable=False,
    )
    applicant_id = db.Column(
        db.String(36), db.ForeignKey("applicants.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(db.String(30), default="DRAFT", comment="DRAFT | SUBMITTED | ...")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    call = db.relationship("Call", back_populates="applications")
    applicant = db.relationship("Applicant")

    def __repr__(self):
        return f"<Application {self.id} call={self.call_id}>"


class User(db.Model):
    """Staff member. Only ``full_name`` is consumed by the milestone core."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(20), default="REVIEWER", comment="ADMIN | REVIEWER | APPLICANT")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
