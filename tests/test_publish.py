"""
Tests for the publish orchestrator.
"""

import pytest

from afu9_control_center.db.models import ControlPackAssignmentModel
from afu9_control_center.github.client import GitHubError
from afu9_control_center.loop.event_store import EvidenceService, TimelineService
from afu9_control_center.publish import PublishOrchestrator, compute_rendered_hash, render_issue


@pytest.fixture
def publisher(db_session, github, settings):
    return PublishOrchestrator(db_session, github, settings=settings)


@pytest.fixture
def bound_issue(make_issue):
    return make_issue(status="CR_BOUND", active_cr_id="cr-42")


def _event_types(db_session, issue_id):
    return [e.event_type for e in TimelineService(db_session).list_for_issue(issue_id)]


class TestRendering:
    def test_render_issue(self, bound_issue):
        rendered = render_issue(bound_issue)

        assert rendered.title == f"[{bound_issue.public_id}] Add retry to webhook sender"
        assert rendered.body.startswith("Webhook deliveries should retry on 5xx.")
        assert f"AFU-9 issue `{bound_issue.public_id}`" in rendered.body
        assert "CR `cr-42`" in rendered.body
        assert rendered.labels == ["backend"]

    def test_hash_ignores_label_order(self):
        a = compute_rendered_hash("t", "b", ["x", "y"])
        b = compute_rendered_hash("t", "b", ["y", "x"])
        assert a == b
        assert a != compute_rendered_hash("t", "b2", ["x", "y"])


class TestPublish:
    async def test_first_publish_creates_github_issue(self, db_session, github, publisher, bound_issue):
        result = await publisher.publish_issue(
            bound_issue.id, "acme", "widgets", request_id="batch-1", user_id="alice"
        )

        assert result.success, result.error
        assert result.action == "created"
        assert result.github_issue_number == 100
        assert result.github_url == "https://github.com/acme/widgets/issues/100"
        assert github.issues[100]["labels"] == ["backend", "afu9"]

        db_session.refresh(bound_issue)
        assert bound_issue.github_issue_number == 100
        assert bound_issue.github_repo == "acme/widgets"
        assert bound_issue.handoff_state == "SYNCED"
        # publishing never moves the lifecycle status
        assert bound_issue.status == "CR_BOUND"

        assert _event_types(db_session, bound_issue.id) == [
            "PUBLISHING_STARTED",
            "PUBLISHED",
            "GITHUB_MIRRORED",
            "CP_ASSIGNED",
        ]
        receipts = EvidenceService(db_session).list_for_issue(bound_issue.id)
        assert [r.evidence_type for r in receipts] == ["PUBLISH_RECEIPT", "GITHUB_MIRROR_RECEIPT"]
        assert receipts[0].request_id == "batch-1"
        assert receipts[0].evidence_data["rendered_hash"] == result.rendered_hash
        assert len(result.cp_assignments) == 1

    async def test_republish_updates_and_assigns_control_pack_once(
        self, db_session, github, publisher, bound_issue
    ):
        first = await publisher.publish_issue(bound_issue.id, "acme", "widgets")
        second = await publisher.publish_issue(bound_issue.id, "acme", "widgets")

        assert second.success
        assert second.action == "updated"
        assert second.github_issue_number == first.github_issue_number
        assert [c[0] for c in github.mutating_calls] == ["create_issue", "update_issue"]
        assert second.cp_assignments == []
        assert db_session.query(ControlPackAssignmentModel).count() == 1
        assert _event_types(db_session, bound_issue.id).count("CP_ASSIGNED") == 1

    async def test_extra_labels_are_deduplicated(self, github, publisher, bound_issue):
        result = await publisher.publish_issue(
            bound_issue.id, "acme", "widgets", labels=["afu9", "urgent", "backend"]
        )

        assert result.success
        assert github.issues[100]["labels"] == ["backend", "afu9", "urgent"]

    async def test_system_actor_without_user(self, db_session, publisher, bound_issue):
        await publisher.publish_issue(bound_issue.id, "acme", "widgets")

        started = TimelineService(db_session).list_for_issue(bound_issue.id)[0]
        assert started.actor == "system"
        assert started.actor_type == "system"


class TestPublishRejected:
    async def test_unknown_issue(self, github, publisher):
        result = await publisher.publish_issue("missing", "acme", "widgets")

        assert not result.success
        assert result.error == "Issue not found: missing"
        assert github.calls == []

    async def test_no_active_cr(self, db_session, github, publisher, make_issue):
        issue = make_issue(status="CREATED")

        result = await publisher.publish_issue(issue.id, "acme", "widgets")

        assert not result.success
        assert "No active CR bound to issue" in result.error
        assert github.calls == []
        assert _event_types(db_session, issue.id) == []

    @pytest.mark.parametrize("status", ["CLOSED", "KILLED"])
    async def test_terminal_issue(self, github, publisher, make_issue, status):
        issue = make_issue(status=status, active_cr_id="cr-1")

        result = await publisher.publish_issue(issue.id, "acme", "widgets")

        assert not result.success
        assert status in result.error
        assert github.calls == []

    async def test_republish_to_other_repo_is_rejected(
        self, db_session, github, publisher, bound_issue
    ):
        first = await publisher.publish_issue(bound_issue.id, "acme", "widgets")

        result = await publisher.publish_issue(bound_issue.id, "acme", "gadgets")

        assert first.success
        assert not result.success
        assert "already mirrored to acme/widgets" in result.error
        assert [c[0] for c in github.mutating_calls] == ["create_issue"]
        db_session.refresh(bound_issue)
        assert bound_issue.github_repo == "acme/widgets"

    async def test_republish_repo_match_ignores_case(self, github, publisher, bound_issue):
        await publisher.publish_issue(bound_issue.id, "acme", "widgets")

        result = await publisher.publish_issue(bound_issue.id, "Acme", "Widgets")

        assert result.success
        assert result.action == "updated"


class TestPublishFailure:
    async def test_github_failure_moves_issue_to_hold(self, db_session, github, publisher, bound_issue):
        github.errors["create_issue"] = GitHubError("Validation Failed", status_code=422)

        result = await publisher.publish_issue(bound_issue.id, "acme", "widgets", user_id="alice")

        assert not result.success
        assert result.error == "GitHub publish failed: Validation Failed"
        db_session.refresh(bound_issue)
        assert bound_issue.status == "HOLD"
        assert bound_issue.handoff_state == "FAILED"
        assert bound_issue.last_error == "Validation Failed"
        assert _event_types(db_session, bound_issue.id) == ["PUBLISHING_STARTED", "PUBLISH_FAILED"]
        assert EvidenceService(db_session).list_for_issue(bound_issue.id) == []

    async def test_failure_on_hold_issue_keeps_hold(self, db_session, github, publisher, make_issue):
        issue = make_issue(status="HOLD", active_cr_id="cr-1", github_issue_number=12)
        github.errors["update_issue"] = GitHubError("Bad credentials", status_code=401)

        result = await publisher.publish_issue(issue.id, "acme", "widgets")

        assert not result.success
        db_session.refresh(issue)
        assert issue.status == "HOLD"
        assert issue.handoff_state == "FAILED"
