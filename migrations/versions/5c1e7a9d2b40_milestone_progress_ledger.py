"""milestone_progress_ledger

Creates the admissions milestone tables:
  - calls, applicants, applications, users  directory owned by the platform
  - milestones  ordered definitions per call
  - milestone_progress  per-(application, milestone) ledger
  - email_logs  outbound notification audit

Uniqueness constraints backing the milestone core:
  - uq_milestones_call_order             (call_id, order_index)
  - uq_progress_application_milestone    (application_id, milestone_id)

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-17 09:12:44.180311
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5c1e7a9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Directory ─────────────────────────────────────────────────────────
    if "calls" not in existing:
        op.create_table(
            "calls",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True,
                      server_default="OPEN", comment="DRAFT | OPEN | CLOSED | ARCHIVED"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "applicants" not in existing:
        op.create_table(
            "applicants",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_applicants_email", "applicants", ["email"])

    if "applications" not in existing:
        op.create_table(
            "applications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("call_id", sa.String(length=36), nullable=False),
            sa.Column("applicant_id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=True, server_default="DRAFT"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["call_id"], ["calls.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["applicant_id"], ["applicants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_applications_call", "applications", ["call_id"])

    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=True,
                      server_default="REVIEWER", comment="ADMIN | REVIEWER | APPLICANT"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    # ── Milestone definitions ─────────────────────────────────────────────
    if "milestones" not in existing:
        op.create_table(
            "milestones",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("call_id", sa.String(length=36), nullable=False),
            sa.Column("form_id", sa.String(length=36), nullable=True,
                      comment="Linked form definition (optional)"),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order_index", sa.Integer(), nullable=False),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("who_can_fill", sa.JSON(), nullable=False,
                      comment="Role tags allowed to fill the milestone form"),
            sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="ACTIVE", comment="ACTIVE | PENDING | INACTIVE"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["call_id"], ["calls.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("call_id", "order_index", name="uq_milestones_call_order"),
        )
        op.create_index("ix_milestones_call", "milestones", ["call_id"])

    # ── Progress ledger ───────────────────────────────────────────────────
    if "milestone_progress" not in existing:
        op.create_table(
            "milestone_progress",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("application_id", sa.String(length=36), nullable=False),
            sa.Column("milestone_id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING",
                      comment="PENDING | IN_PROGRESS | COMPLETED | REJECTED | NEEDS_CHANGES"),
            sa.Column("review_status", sa.String(length=20), nullable=True,
                      comment="APPROVED | REJECTED | NEEDS_CHANGES"),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.Column("reviewed_by", sa.String(length=36), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_by", sa.String(length=36), nullable=True),
            sa.Column("form_submission_id", sa.String(length=36), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["application_id"], ["applications.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["milestone_id"], ["milestones.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("application_id", "milestone_id",
                                name="uq_progress_application_milestone"),
        )
        op.create_index("ix_progress_application", "milestone_progress", ["application_id"])
        op.create_index("ix_progress_milestone", "milestone_progress", ["milestone_id"])

    # ── Email audit ───────────────────────────────────────────────────────
    if "email_logs" not in existing:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=150), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True, server_default="milestone"),
            sa.Column("status", sa.String(length=20), nullable=True, server_default="queued",
                      comment="queued, sent, failed"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("application_id", sa.String(length=36), nullable=True),
            sa.Column("progress_id", sa.String(length=36), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])
        op.create_index("ix_email_logs_application_id", "email_logs", ["application_id"])


def downgrade():
    op.drop_table("email_logs")
    op.drop_table("milestone_progress")
    op.drop_table("milestones")
    op.drop_table("users")
    op.drop_table("applications")
    op.drop_table("applicants")
    op.drop_table("calls")
