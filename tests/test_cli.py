"""Tests for the afu9 command line interface."""

import pytest
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from afu9_control_center import cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_sessions(engine, monkeypatch):
    """Point the CLI at the per-test in-memory database."""
    monkeypatch.setattr(cli, "get_session_local", lambda: sessionmaker(bind=engine))


class TestStepCommand:
    def test_runs_step(self, db_session, make_issue):
        issue = make_issue(status="SPEC_READY")

        result = runner.invoke(cli.app, ["step", issue.id, "implement", "--actor", "alice"])

        assert result.exit_code == 0, result.output
        db_session.refresh(issue)
        assert issue.status == "IMPLEMENTING_PREP"

    def test_blocked_step_exits_3(self, make_issue):
        issue = make_issue(status="CREATED")

        result = runner.invoke(cli.app, ["step", issue.id, "implement"])

        assert result.exit_code == 3
        assert "INVARIANT_VIOLATION" in result.output

    def test_remediate_reason_option(self, db_session, make_issue):
        issue = make_issue(status="DONE")

        result = runner.invoke(
            cli.app, ["step", issue.id, "remediate", "--reason", "smoke tests red"]
        )

        assert result.exit_code == 0, result.output
        db_session.refresh(issue)
        assert issue.status == "HOLD"

    def test_unknown_action_exits_2(self, make_issue):
        issue = make_issue()

        result = runner.invoke(cli.app, ["step", issue.id, "launch"])

        assert result.exit_code == 2

    def test_bad_params_exit_2(self, make_issue):
        issue = make_issue()

        result = runner.invoke(cli.app, ["step", issue.id, "pick", "--params", "{not json"])

        assert result.exit_code == 2

    def test_missing_issue_exits_1(self):
        result = runner.invoke(cli.app, ["step", "missing", "pick"])

        assert result.exit_code == 1
        assert "Issue not found" in result.output


class TestHistoryCommands:
    def test_runs_and_timeline(self, make_issue):
        issue = make_issue(status="SPEC_READY")
        runner.invoke(cli.app, ["step", issue.id, "implement"])

        runs = runner.invoke(cli.app, ["runs", issue.id])
        timeline = runner.invoke(cli.app, ["timeline", issue.id])

        assert runs.exit_code == 0, runs.output
        assert "Runs for" in runs.output
        assert timeline.exit_code == 0, timeline.output
        assert "Timeline for" in timeline.output
