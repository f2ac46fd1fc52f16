"""
Progress initializer tests.

Covers:
    - initialize_for_application seeds exactly one IN_PROGRESS row
    - re-initialization is idempotent and never overwrites rows
    - auto-initialization on milestone create (new PENDING row only)
    - sync_for_call backfills only missing pairs, always PENDING
    - sync_all_calls aggregates per call
"""

import json
import logging

import pytest
from sqlalchemy import select

from admissions.core.exceptions import NotFoundError, ValidationError
from admissions.middleware.logging_config import JSONFormatter
from admissions.models import db
from admissions.models.milestone import (
    COMPLETED,
    IN_PROGRESS,
    PENDING,
    MilestoneDefinition,
    MilestoneProgress,
)
from admissions.services import progress_initializer
from admissions.services.milestone_store import create_milestone


def _statuses(application_id):
    """Row statuses of an application ordered by milestone order_index."""
    rows = db.session.execute(
        select(MilestoneProgress.status)
        .join(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
        .where(MilestoneProgress.application_id == application_id)
        .order_by(MilestoneDefinition.order_index)
    ).scalars().all()
    return list(rows)


def _snapshot(call_id):
    rows = db.session.execute(
        select(MilestoneProgress)
        .join(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
        .where(MilestoneDefinition.call_id == call_id)
    ).scalars().all()
    return {r.id: r.to_dict() for r in rows}


# ═════════════════════════════════════════════════════════════════════════════
# initialize_for_application
# ═════════════════════════════════════════════════════════════════════════════


class TestInitializeForApplication:
    def test_first_row_in_progress_rest_pending(self, call, make_application, make_milestones):
        make_milestones(call, ["Intake", "Docs", "Interview"])
        app_x = make_application(call)

        result = progress_initializer.initialize_for_application(app_x.id, call.id)

        assert result == {"created": 3}
        assert _statuses(app_x.id) == [IN_PROGRESS, PENDING, PENDING]

    def test_second_call_creates_nothing(self, call, make_application, make_milestones):
        make_milestones(call, ["Intake", "Docs"])
        app_x = make_application(call)
        progress_initializer.initialize_for_application(app_x.id, call.id)
        before = _snapshot(call.id)

        result = progress_initializer.initialize_for_application(app_x.id, call.id)

        assert result == {"created": 0}
        assert _snapshot(call.id) == before

    def test_no_second_in_progress_when_position_exists(self, call, make_application, make_milestones):
        """Rows added later stay PENDING when the application already advanced."""
        m1, m2 = make_milestones(call, ["Intake", "Docs"])
        app_x = make_application(call)
        db.session.add(MilestoneProgress(application_id=app_x.id, milestone_id=m1.id, status=COMPLETED))
        db.session.commit()

        result = progress_initializer.initialize_for_application(app_x.id, call.id)

        assert result == {"created": 1}
        assert _statuses(app_x.id) == [COMPLETED, PENDING]

    def test_lowest_new_row_seeded_when_no_position(self, call, make_application, make_milestones):
        m1, _m2, _m3 = make_milestones(call, ["Intake", "Docs", "Interview"])
        app_x = make_application(call)
        db.session.add(MilestoneProgress(application_id=app_x.id, milestone_id=m1.id, status=PENDING))
        db.session.commit()

        progress_initializer.initialize_for_application(app_x.id, call.id)

        assert _statuses(app_x.id) == [PENDING, IN_PROGRESS, PENDING]
        assert _statuses(app_x.id).count(IN_PROGRESS) == 1

    def test_call_without_milestones(self, call, make_application):
        app_x = make_application(call)
        assert progress_initializer.initialize_for_application(app_x.id, call.id) == {"created": 0}

    def test_unknown_application(self, call):
        with pytest.raises(NotFoundError):
            progress_initializer.initialize_for_application("missing", call.id)

    def test_application_from_other_call(self, call, make_application):
        from admissions.models.directory import Call

        other = Call(name="Other Call")
        db.session.add(other)
        db.session.commit()
        app_x = make_application(call)

        with pytest.raises(ValidationError):
            progress_initializer.initialize_for_application(app_x.id, other.id)


# ═════════════════════════════════════════════════════════════════════════════
# auto_initialize_on_milestone_create
# ═════════════════════════════════════════════════════════════════════════════


class TestAutoInitializeOnMilestoneCreate:
    def test_new_milestone_adds_pending_row_only(self, call, make_application, make_milestones):
        """Call with milestones [1, 2]; adding 3 creates row3 PENDING, rows 1-2 untouched."""
        make_milestones(call, ["Intake", "Docs"])
        app_y = make_application(call)
        progress_initializer.initialize_for_application(app_y.id, call.id)
        before = _snapshot(call.id)

        milestone, created = create_milestone(call.id, "Interview", 3)

        assert created == 1
        assert _statuses(app_y.id) == [IN_PROGRESS, PENDING, PENDING]
        after = _snapshot(call.id)
        for row_id, row in before.items():
            assert after[row_id] == row
        new_row = db.session.execute(
            select(MilestoneProgress).where(MilestoneProgress.milestone_id == milestone.id)
        ).scalar_one()
        assert new_row.status == PENDING

    def test_covers_every_application(self, call, make_application, make_milestones):
        make_milestones(call, ["Intake"])
        apps = [make_application(call) for _ in range(3)]

        _milestone, created = create_milestone(call.id, "Docs", 2)

        assert created == 3
        for a in apps:
            assert len(_statuses(a.id)) == 1

    def test_direct_call_is_idempotent(self, call, make_application, make_milestones):
        (m1,) = make_milestones(call, ["Intake"])
        make_application(call)

        assert progress_initializer.auto_initialize_on_milestone_create(m1.id, call.id) == 1
        assert progress_initializer.auto_initialize_on_milestone_create(m1.id, call.id) == 0


# ═════════════════════════════════════════════════════════════════════════════
# sync_for_call / sync_all_calls
# ═════════════════════════════════════════════════════════════════════════════


class TestSyncForCall:
    def test_fills_exactly_the_missing_pair(self, call, make_application, make_milestones):
        """3 applications × 2 milestones with one pair missing → created = 1."""
        make_milestones(call, ["Intake", "Docs"])
        apps = [make_application(call) for _ in range(3)]
        for a in apps:
            progress_initializer.initialize_for_application(a.id, call.id)

        victim = db.session.execute(
            select(MilestoneProgress).where(MilestoneProgress.application_id == apps[1].id)
            .join(MilestoneDefinition, MilestoneDefinition.id == MilestoneProgress.milestone_id)
            .where(MilestoneDefinition.order_index == 2)
        ).scalar_one()
        db.session.delete(victim)
        db.session.commit()
        before = _snapshot(call.id)

        created = progress_initializer.sync_for_call(call.id)

        assert created == 1
        after = _snapshot(call.id)
        assert len(after) == 6
        for row_id, row in before.items():
            assert after[row_id] == row
        (new_id,) = set(after) - set(before)
        assert after[new_id]["status"] == PENDING
        assert after[new_id]["application_id"] == apps[1].id

    def test_sync_rows_are_pending(self, call, make_application, make_milestones):
        make_milestones(call, ["Intake", "Docs"])
        app_x = make_application(call)

        assert progress_initializer.sync_for_call(call.id) == 2
        assert _statuses(app_x.id) == [PENDING, PENDING]
        assert progress_initializer.sync_for_call(call.id) == 0

    def test_unknown_call(self):
        with pytest.raises(NotFoundError):
            progress_initializer.sync_for_call("missing")

    def test_sync_all_calls(self, call, make_application, make_milestones):
        from admissions.models.directory import Call

        other = Call(name="Postdoc Call 2026")
        db.session.add(other)
        db.session.commit()
        make_milestones(call, ["Intake", "Docs"])
        make_milestones(other, ["Intake"])
        make_application(call)
        make_application(other)
        make_application(other)

        result = progress_initializer.sync_all_calls()

        assert result["calls"] == 2
        assert result["created"] == 4
        assert result["per_call"] == {call.id: 2, other.id: 2}


# ═════════════════════════════════════════════════════════════════════════════
# Structured log records
# ═════════════════════════════════════════════════════════════════════════════


class TestLogRecords:
    """Initialization paths emit INFO records carrying their row counts."""

    def test_initialize_logs_rows_created(self, call, make_application, make_milestones, caplog):
        make_milestones(call, ["Intake", "Docs"])
        app_x = make_application(call)

        with caplog.at_level(logging.INFO, logger="admissions.services.progress_initializer"):
            result = progress_initializer.initialize_for_application(app_x.id, call.id)

        assert result == {"created": 2}
        record = next(r for r in caplog.records if r.getMessage().startswith("Progress initialized"))
        assert record.rows_created == 2
        assert record.application_id == app_x.id

    def test_sync_and_milestone_create_log_rows_created(self, call, make_application, caplog):
        make_application(call)

        with caplog.at_level(logging.INFO):
            milestone, created = create_milestone(call.id, "Intake", 1)
            synced = progress_initializer.sync_all_calls()

        assert created == 1
        assert synced["created"] == 0
        counts = [r.rows_created for r in caplog.records if hasattr(r, "rows_created")]
        assert 1 in counts
        assert any(r.milestone_id == milestone.id for r in caplog.records if hasattr(r, "milestone_id"))

    def test_json_formatter_emits_rows_created(self, call, make_application, make_milestones, caplog):
        make_milestones(call, ["Intake"])
        app_x = make_application(call)

        with caplog.at_level(logging.INFO, logger="admissions.services.progress_initializer"):
            progress_initializer.initialize_for_application(app_x.id, call.id)

        record = next(r for r in caplog.records if r.getMessage().startswith("Progress initialized"))
        payload = json.loads(JSONFormatter().format(record))
        assert payload["rows_created"] == 1
        assert payload["call_id"] == call.id
