"""CLI tests for `flask sync-progress`."""

from admissions.models.milestone import MilestoneProgress


def test_sync_progress_all_calls(app, call, make_application, make_milestones):
    make_milestones(call, ["Intake", "Docs"])
    make_application(call)

    result = app.test_cli_runner().invoke(args=["sync-progress"])

    assert result.exit_code == 0
    assert "Total: 2 row(s) across 1 call(s)." in result.output
    assert MilestoneProgress.query.count() == 2


def test_sync_progress_single_call(app, call, make_application, make_milestones):
    make_milestones(call, ["Intake"])
    make_application(call)

    result = app.test_cli_runner().invoke(args=["sync-progress", "--call-id", call.id])

    assert result.exit_code == 0
    assert f"Call {call.id}: 1 progress row(s) created." in result.output
