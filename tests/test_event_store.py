"""
Tests for the issue timeline and evidence receipts.
"""

from afu9_control_center.loop.event_store import (
    EvidenceService,
    EvidenceType,
    TimelineEventType,
    TimelineService,
)


class TestTimelineService:
    def test_record_and_read_back(self, db_session):
        timeline = TimelineService(db_session)
        event = timeline.record(
            "issue-1",
            TimelineEventType.SPEC_READY,
            {"runId": "run-1", "step": "S2_SPEC_READY", "stateBefore": "CREATED"},
            actor="alice",
        )

        data = event.to_dict()
        assert data["event_type"] == "SPEC_READY"
        assert data["actor"] == "alice"
        assert data["actor_type"] == "user"
        # run and step are lifted from the payload when not given
        assert data["run_id"] == "run-1"
        assert data["step"] == "S2_SPEC_READY"

    def test_events_are_chronological(self, db_session):
        timeline = TimelineService(db_session)
        for event_type in (
            TimelineEventType.ISSUE_PICKED,
            TimelineEventType.SPEC_READY,
            TimelineEventType.IMPLEMENT_PREP,
        ):
            timeline.record("issue-1", event_type, {}, actor="alice")

        events = timeline.list_for_issue("issue-1")
        assert [e.event_type for e in events] == ["ISSUE_PICKED", "SPEC_READY", "IMPLEMENT_PREP"]
        assert timeline.count_for_issue("issue-1") == 3

    def test_filter_by_type(self, db_session):
        timeline = TimelineService(db_session)
        timeline.record("issue-1", TimelineEventType.STEP_BLOCKED, {}, actor="alice")
        timeline.record("issue-1", TimelineEventType.MERGED, {}, actor="alice")

        blocked = timeline.list_for_issue("issue-1", event_type=TimelineEventType.STEP_BLOCKED)
        assert len(blocked) == 1

    def test_list_for_run(self, db_session):
        timeline = TimelineService(db_session)
        timeline.record("issue-1", TimelineEventType.MERGED, {}, actor="a", run_id="run-1")
        timeline.record("issue-1", TimelineEventType.VERIFIED, {}, actor="a", run_id="run-2")

        assert [e.event_type for e in timeline.list_for_run("run-1")] == ["MERGED"]


class TestEvidenceService:
    def test_receipts_are_appended(self, db_session):
        evidence = EvidenceService(db_session)
        evidence.record("issue-1", EvidenceType.PUBLISH_RECEIPT, {"batch_id": "b1"}, request_id="b1")
        evidence.record("issue-1", EvidenceType.GITHUB_MIRROR_RECEIPT, {"batch_id": "b1"})

        records = evidence.list_for_issue("issue-1")
        assert [r.evidence_type for r in records] == ["PUBLISH_RECEIPT", "GITHUB_MIRROR_RECEIPT"]
        assert records[0].request_id == "b1"
