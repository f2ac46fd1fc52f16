"""
Milestone definition store tests.

Covers contiguous order_index enforcement, updates that cannot reorder,
and removal restricted to the last, unused milestone.
"""

from datetime import datetime, timezone

import pytest

from admissions.core.exceptions import ConflictError, NotFoundError, ValidationError
from admissions.models.milestone import DEFAULT_WHO_CAN_FILL
from admissions.services import milestone_store
from admissions.services.progress_initializer import initialize_for_application


class TestCreate:
    def test_create_defaults(self, call):
        milestone, created = milestone_store.create_milestone(call.id, "Intake", 1)

        assert created == 0
        assert milestone.order_index == 1
        assert milestone.required is True
        assert milestone.status == "ACTIVE"
        assert milestone.who_can_fill == DEFAULT_WHO_CAN_FILL

    def test_create_with_extra_fields(self, call):
        due = datetime(2026, 12, 1, tzinfo=timezone.utc)
        milestone, _ = milestone_store.create_milestone(
            call.id, "Documents", 1, required=False, who_can_fill=["applicant", "Supervisor"],
            form_id="form-1", description="Upload transcripts", due_date=due,
        )

        data = milestone.to_dict()
        assert data["required"] is False
        assert data["who_can_fill"] == ["APPLICANT", "SUPERVISOR"]
        assert data["form_id"] == "form-1"
        assert data["description"] == "Upload transcripts"
        assert data["due_date"] is not None

    def test_duplicate_order_index(self, call):
        milestone_store.create_milestone(call.id, "Intake", 1)
        with pytest.raises(ConflictError):
            milestone_store.create_milestone(call.id, "Other", 1)

    def test_gap_rejected(self, call):
        milestone_store.create_milestone(call.id, "Intake", 1)
        with pytest.raises(ValidationError) as exc:
            milestone_store.create_milestone(call.id, "Interview", 3)
        assert exc.value.details["next_order_index"] == 2

    def test_first_index_must_be_one(self, call):
        with pytest.raises(ValidationError):
            milestone_store.create_milestone(call.id, "Intake", 2)

    @pytest.mark.parametrize("order_index", [0, -1, "1", True])
    def test_invalid_order_index(self, call, order_index):
        with pytest.raises(ValidationError):
            milestone_store.create_milestone(call.id, "Intake", order_index)

    @pytest.mark.parametrize("name", ["", "ab", "x" * 201])
    def test_invalid_name(self, call, name):
        with pytest.raises(ValidationError):
            milestone_store.create_milestone(call.id, name, 1)

    def test_due_before_start(self, call):
        with pytest.raises(ValidationError):
            milestone_store.create_milestone(
                call.id, "Intake", 1,
                start_date=datetime(2026, 5, 1, tzinfo=timezone.utc),
                due_date=datetime(2026, 4, 1, tzinfo=timezone.utc),
            )

    def test_unknown_call(self):
        with pytest.raises(NotFoundError):
            milestone_store.create_milestone("missing", "Intake", 1)

    def test_indexes_are_per_call(self, call):
        from admissions.models import db
        from admissions.models.directory import Call

        other = Call(name="Other Call")
        db.session.add(other)
        db.session.commit()

        milestone_store.create_milestone(call.id, "Intake", 1)
        milestone, _ = milestone_store.create_milestone(other.id, "Intake", 1)
        assert milestone.order_index == 1


class TestQueries:
    def test_find_by_call_ordered(self, call):
        for index, name in enumerate(["Intake", "Docs", "Interview"], start=1):
            milestone_store.create_milestone(call.id, name, index)

        names = [m.name for m in milestone_store.find_by_call(call.id)]
        assert names == ["Intake", "Docs", "Interview"]

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            milestone_store.get_milestone("missing")


class TestUpdate:
    def test_update_fields(self, call):
        milestone, _ = milestone_store.create_milestone(call.id, "Intake", 1)

        updated = milestone_store.update_milestone(
            milestone.id, {"name": "Initial intake", "required": False, "status": "INACTIVE"},
        )

        assert updated.name == "Initial intake"
        assert updated.required is False
        assert updated.status == "INACTIVE"

    def test_reorder_rejected(self, call):
        milestone_store.create_milestone(call.id, "Intake", 1)
        second, _ = milestone_store.create_milestone(call.id, "Docs", 2)

        with pytest.raises(ValidationError):
            milestone_store.update_milestone(second.id, {"order_index": 1})

    def test_same_order_index_is_accepted(self, call):
        milestone, _ = milestone_store.create_milestone(call.id, "Intake", 1)
        updated = milestone_store.update_milestone(milestone.id, {"order_index": 1, "name": "Intake v2"})
        assert updated.name == "Intake v2"

    def test_invalid_status(self, call):
        milestone, _ = milestone_store.create_milestone(call.id, "Intake", 1)
        with pytest.raises(ValidationError):
            milestone_store.update_milestone(milestone.id, {"status": "ARCHIVED"})


class TestRemove:
    def test_remove_last(self, call):
        milestone_store.create_milestone(call.id, "Intake", 1)
        second, _ = milestone_store.create_milestone(call.id, "Docs", 2)

        milestone_store.remove_milestone(second.id)

        assert [m.name for m in milestone_store.find_by_call(call.id)] == ["Intake"]

    def test_remove_not_last(self, call):
        first, _ = milestone_store.create_milestone(call.id, "Intake", 1)
        milestone_store.create_milestone(call.id, "Docs", 2)

        with pytest.raises(ValidationError):
            milestone_store.remove_milestone(first.id)

    def test_remove_with_progress_rows(self, call, make_application):
        milestone, _ = milestone_store.create_milestone(call.id, "Intake", 1)
        application = make_application(call)
        initialize_for_application(application.id, call.id)

        with pytest.raises(ValidationError) as exc:
            milestone_store.remove_milestone(milestone.id)
        assert exc.value.details["progress_rows"] == 1
