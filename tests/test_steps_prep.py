"""
Tests for the pre-merge step executors: S1 pick, S2 spec gate, S3 implement
prep, S4 review gate.
"""

import pytest

from afu9_control_center.github.client import CheckRun, GitHubError
from afu9_control_center.loop.event_store import TimelineService
from afu9_control_center.loop.results import IssueNotFoundError
from afu9_control_center.loop.state import BlockerCode, ExecutionMode
from afu9_control_center.loop.steps import (
    ImplementPrepExecutor,
    PickIssueExecutor,
    ReviewGateExecutor,
    SpecGateExecutor,
)

from conftest import ISSUE_URL, PR_URL


def _events(db_session, issue_id):
    return TimelineService(db_session).list_for_issue(issue_id)


class TestPickIssue:
    async def test_assigns_unassigned_issue(self, db_session, make_issue, run_executor):
        issue = make_issue(github_url=ISSUE_URL)

        result = await run_executor(PickIssueExecutor, issue.id, actor="alice")

        assert result.success
        assert result.state_before == "CREATED"
        assert result.state_after == "CREATED"
        assert result.fields_changed == ["assignee"]
        db_session.refresh(issue)
        assert issue.assignee == "alice"
        assert [e.event_type for e in _events(db_session, issue.id)] == ["ISSUE_PICKED"]

    async def test_already_assigned_keeps_assignee(self, db_session, make_issue, run_executor):
        issue = make_issue(github_url=ISSUE_URL, assignee="carol")

        result = await run_executor(PickIssueExecutor, issue.id, actor="alice")

        assert result.success
        assert result.fields_changed == []
        db_session.refresh(issue)
        assert issue.assignee == "carol"

    async def test_no_github_link_blocks(self, make_issue, run_executor):
        issue = make_issue(github_url=None)

        result = await run_executor(PickIssueExecutor, issue.id)

        assert result.blocked
        assert result.blocker_code == BlockerCode.NO_GITHUB_LINK

    async def test_terminal_issue_blocks(self, make_issue, run_executor):
        issue = make_issue(status="KILLED", github_url=ISSUE_URL)

        result = await run_executor(PickIssueExecutor, issue.id)

        assert result.blocker_code == BlockerCode.INVARIANT_VIOLATION

    async def test_missing_issue_is_hard_error(self, run_executor):
        with pytest.raises(IssueNotFoundError):
            await run_executor(PickIssueExecutor, "does-not-exist")

    async def test_unknown_status_blocks(self, make_issue, run_executor):
        issue = make_issue(status="LIMBO", github_url=ISSUE_URL)

        result = await run_executor(PickIssueExecutor, issue.id)

        assert result.blocker_code == BlockerCode.UNKNOWN_STATE


class TestSpecGate:
    async def test_promotes_issue_with_valid_committed_draft(
        self, db_session, make_issue, make_draft, run_executor
    ):
        draft = make_draft("session-1", validation="valid", versions=2)
        issue = make_issue(status="CR_BOUND", source_session_id="session-1")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.success
        assert (result.state_before, result.state_after) == ("CR_BOUND", "SPEC_READY")
        assert result.fields_changed == ["status"]
        assert result.details["draftId"] == draft.id
        db_session.refresh(issue)
        assert issue.status == "SPEC_READY"

    async def test_no_session_blocks(self, make_issue, run_executor):
        issue = make_issue(status="CREATED")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_DRAFT

    async def test_missing_draft_blocks(self, make_issue, run_executor):
        issue = make_issue(status="DRAFT_READY", source_session_id="nowhere")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_DRAFT

    async def test_uncommitted_draft_blocks(self, make_issue, make_draft, run_executor):
        make_draft("session-2", versions=0)
        issue = make_issue(status="DRAFT_READY", source_session_id="session-2")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_COMMITTED_DRAFT

    @pytest.mark.parametrize("validation", ["invalid", "unknown"])
    async def test_invalid_draft_blocks(self, db_session, make_issue, make_draft, run_executor, validation):
        make_draft("session-3", validation=validation)
        issue = make_issue(status="VERSION_COMMITTED", source_session_id="session-3")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.DRAFT_INVALID
        assert validation in result.blocker_message
        db_session.refresh(issue)
        assert issue.status == "VERSION_COMMITTED"

    async def test_already_spec_ready_is_noop(self, make_issue, run_executor):
        issue = make_issue(status="SPEC_READY")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.success
        assert result.fields_changed == []
        assert result.details["isNoOp"] is True

    async def test_later_state_blocks(self, make_issue, run_executor):
        issue = make_issue(status="DONE")

        result = await run_executor(SpecGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.INVARIANT_VIOLATION
        assert "DONE" in result.blocker_message


class TestImplementPrep:
    async def test_spec_ready_moves_to_implementing_prep(self, db_session, make_issue, run_executor):
        issue = make_issue(status="SPEC_READY")

        result = await run_executor(ImplementPrepExecutor, issue.id)

        assert result.success
        assert result.state_after == "IMPLEMENTING_PREP"
        db_session.refresh(issue)
        assert issue.status == "IMPLEMENTING_PREP"

    async def test_second_invocation_is_noop(self, make_issue, run_executor):
        issue = make_issue(status="SPEC_READY")

        await run_executor(ImplementPrepExecutor, issue.id)
        again = await run_executor(ImplementPrepExecutor, issue.id)

        assert again.success
        assert again.fields_changed == []
        assert again.state_before == again.state_after == "IMPLEMENTING_PREP"

    async def test_wrong_state_blocks(self, make_issue, run_executor):
        issue = make_issue(status="CREATED")

        result = await run_executor(ImplementPrepExecutor, issue.id)

        assert result.blocker_code == BlockerCode.INVARIANT_VIOLATION
        assert result.blocker_message == "S3 requires state SPEC_READY, issue is CREATED"


class TestReviewGate:
    async def test_requests_review(self, db_session, github, make_issue, run_executor):
        github.add_pr()
        issue = make_issue(status="IMPLEMENTING_PREP", github_url=ISSUE_URL, pr_url=PR_URL)

        result = await run_executor(ReviewGateExecutor, issue.id)

        assert result.success
        assert result.state_after == "REVIEW_READY"
        assert result.details["prUrl"] == PR_URL
        assert result.details["gateDecision"]["verdict"] == "PASS"
        assert result.details["checksSnapshot"]["passedChecks"] == 1
        db_session.refresh(issue)
        assert issue.status == "REVIEW_READY"
        (event,) = _events(db_session, issue.id)
        assert event.event_type == "REVIEW_REQUESTED"
        assert event.event_data["gateDecision"]["reviewStatus"] == "APPROVED"

    async def test_no_github_link_blocks_first(self, make_issue, run_executor):
        issue = make_issue(status="IMPLEMENTING_PREP", github_url=None, pr_url=None)

        result = await run_executor(ReviewGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_GITHUB_LINK

    async def test_no_pr_blocks(self, make_issue, run_executor):
        issue = make_issue(status="IMPLEMENTING_PREP", github_url=ISSUE_URL, pr_url="  ")

        result = await run_executor(ReviewGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_PR_LINKED

    @pytest.mark.parametrize(
        "pr_url", ["not-a-pr-url", "https://github.com/acme/widgets/issues/3"]
    )
    async def test_unparseable_pr_url_blocks(
        self, db_session, github, make_issue, run_executor, pr_url
    ):
        issue = make_issue(status="IMPLEMENTING_PREP", github_url=ISSUE_URL, pr_url=pr_url)

        result = await run_executor(ReviewGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.NO_PR_LINKED
        assert "Invalid PR URL format" in result.blocker_message
        assert github.calls == []
        db_session.refresh(issue)
        assert issue.status == "IMPLEMENTING_PREP"

    async def test_wrong_state_blocks(self, make_issue, run_executor):
        issue = make_issue(status="SPEC_READY", github_url=ISSUE_URL, pr_url=PR_URL)

        result = await run_executor(ReviewGateExecutor, issue.id)

        assert result.blocker_code == BlockerCode.INVARIANT_VIOLATION
        assert "expected IMPLEMENTING_PREP" in result.blocker_message

    async def test_dry_run_leaves_state(self, db_session, github, make_issue, run_executor):
        issue = make_issue(status="IMPLEMENTING_PREP", github_url=ISSUE_URL, pr_url=PR_URL)

        result = await run_executor(ReviewGateExecutor, issue.id, mode=ExecutionMode.DRY_RUN)

        assert result.success
        assert result.state_after == "REVIEW_READY"
        assert "gateDecision" not in result.details
        assert github.calls == []
        db_session.refresh(issue)
        assert issue.status == "IMPLEMENTING_PREP"
        events = _events(db_session, issue.id)
        assert events[-1].event_data["simulated"] is True


class TestReviewGateDecision:
    @pytest.fixture
    def implementing(self, make_issue):
        return make_issue(status="IMPLEMENTING_PREP", github_url=ISSUE_URL, pr_url=PR_URL)

    async def test_unapproved_pr_blocks(self, db_session, github, implementing, run_executor):
        github.add_pr(approved=False)

        result = await run_executor(ReviewGateExecutor, implementing.id)

        assert result.blocker_code == BlockerCode.NO_REVIEW_APPROVAL
        assert result.details["gateDecision"]["verdict"] == "FAIL"
        db_session.refresh(implementing)
        assert implementing.status == "IMPLEMENTING_PREP"
        (event,) = _events(db_session, implementing.id)
        assert event.event_type == "STEP_BLOCKED"
        assert event.event_data["gateDecision"]["blockReason"] == "NO_REVIEW_APPROVAL"

    async def test_failed_checks_block(self, github, implementing, run_executor):
        github.add_pr(checks=[CheckRun(name="unit", status="completed", conclusion="failure")])

        result = await run_executor(ReviewGateExecutor, implementing.id)

        assert result.blocker_code == BlockerCode.CHECKS_FAILED
        assert result.blocker_message == "1 check(s) failed: unit"
        assert result.details["checksSnapshot"]["failedCheckNames"] == ["unit"]

    async def test_pr_fetch_failure(self, github, implementing, run_executor):
        result = await run_executor(ReviewGateExecutor, implementing.id)

        assert result.blocker_code == BlockerCode.PR_FETCH_FAILED

    async def test_reviews_fetch_failure(self, github, implementing, run_executor):
        github.add_pr()
        github.errors["list_reviews"] = GitHubError("boom", status_code=500)

        result = await run_executor(ReviewGateExecutor, implementing.id)

        assert result.blocker_code == BlockerCode.PR_FETCH_FAILED

    async def test_snapshot_failure(self, github, implementing, run_executor):
        github.add_pr()
        github.errors["list_check_runs"] = GitHubError("boom", status_code=502)

        result = await run_executor(ReviewGateExecutor, implementing.id)

        assert result.blocker_code == BlockerCode.SNAPSHOT_FETCH_FAILED
        assert result.state_after == "IMPLEMENTING_PREP"
