"""
Tests for verdict evaluation and the verification service.
"""

import pytest
from pydantic import ValidationError

from afu9_control_center.loop.event_store import TimelineService
from afu9_control_center.loop.results import IssueNotFoundError
from afu9_control_center.verification import (
    VerificationEvidence,
    VerificationService,
    evaluate_verdict,
)


def _evidence(**overrides):
    data = {
        "deploymentObservations": [
            {
                "deploymentId": 1,
                "environment": "production",
                "sha": "deadbeefcafe",
                "status": "success",
                "isAuthentic": True,
                "observedAt": "2026-01-01T12:00:00Z",
            }
        ]
    }
    data.update(overrides)
    return VerificationEvidence.model_validate(data)


class TestEvaluateVerdict:
    def test_authentic_deployment_is_green(self):
        result = evaluate_verdict(_evidence())

        assert result.verdict == "GREEN"
        assert result.failed_checks == []
        assert result.evaluation_rules == ["RULE_AUTHENTIC_DEPLOYMENT"]

    @pytest.mark.parametrize("status,authentic", [("failure", True), ("success", False)])
    def test_no_authentic_success_is_red(self, status, authentic):
        evidence = _evidence()
        evidence.deployment_observations[0].status = status
        evidence.deployment_observations[0].is_authentic = authentic

        result = evaluate_verdict(evidence)

        assert result.verdict == "RED"
        assert result.failed_checks == ["No authentic successful deployment found"]

    def test_failing_health_check(self):
        result = evaluate_verdict(
            _evidence(
                healthChecks=[
                    {"endpoint": "/health", "status": 200},
                    {"endpoint": "/ready", "status": 503},
                ]
            )
        )

        assert result.verdict == "RED"
        assert result.failed_checks == ["Health check failed: /ready returned 503"]
        assert result.evaluation_rules[-1] == "RULE_HEALTH_CHECKS"

    def test_integration_failures(self):
        result = evaluate_verdict(_evidence(integrationTests={"passed": 10, "failed": 2}))

        assert result.verdict == "RED"
        assert result.rationale == "Integration tests failed"

    def test_error_rate_above_threshold(self):
        result = evaluate_verdict(_evidence(errorRates={"current": 0.08, "threshold": 0.05}))

        assert result.verdict == "RED"
        assert "RULE_ERROR_RATES" in result.evaluation_rules

    def test_all_rules_pass(self):
        result = evaluate_verdict(
            _evidence(
                healthChecks=[{"endpoint": "/health", "status": 204}],
                integrationTests={"passed": 40, "failed": 0, "skipped": 1},
                errorRates={"current": 0.01, "threshold": 0.05},
            )
        )

        assert result.verdict == "GREEN"
        assert result.rationale == "All verification checks passed"
        assert result.evaluation_rules == [
            "RULE_AUTHENTIC_DEPLOYMENT",
            "RULE_HEALTH_CHECKS",
            "RULE_INTEGRATION_TESTS",
            "RULE_ERROR_RATES",
        ]

    def test_deployment_observations_required(self):
        with pytest.raises(ValidationError):
            VerificationEvidence.model_validate({})


class TestVerificationService:
    def test_record_persists_verdict_and_timeline_event(self, db_session, make_issue):
        issue = make_issue(status="DONE")
        service = VerificationService(db_session)

        verdict = service.record(issue.id, _evidence(), run_id="run-9", actor="alice")

        assert verdict.verdict == "GREEN"
        assert verdict.evidence["deploymentObservations"][0]["isAuthentic"] is True
        assert service.latest(issue.id).id == verdict.id
        (event,) = TimelineService(db_session).list_for_issue(issue.id)
        assert event.event_type == "VERDICT_SET"
        assert event.event_data["verdictId"] == verdict.id
        assert event.run_id == "run-9"

    def test_list_is_newest_first(self, db_session, make_issue):
        issue = make_issue(status="DONE")
        service = VerificationService(db_session)
        first = service.record(issue.id, _evidence())
        second = service.record(issue.id, _evidence(integrationTests={"passed": 1, "failed": 1}))

        listed = service.list_for_issue(issue.id)

        assert [v["id"] for v in listed] == [second.id, first.id]
        assert service.latest(issue.id).verdict == "RED"

    def test_unknown_issue(self, db_session):
        with pytest.raises(IssueNotFoundError):
            VerificationService(db_session).record("missing", _evidence())
