"""
Verification verdicts.

Deterministic GREEN/RED evaluation of post-merge evidence. The latest
verdict for an issue is what the S7 verify gate reads.

Rules, applied in order; the first failing rule decides RED:

1. RULE_AUTHENTIC_DEPLOYMENT: at least one authentic, successful deployment
2. RULE_HEALTH_CHECKS: every health check returned 2xx (if any were given)
3. RULE_INTEGRATION_TESTS: zero failures (if test results were given)
4. RULE_ERROR_RATES: current error rate not above threshold (if given)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from .db.models import VerificationVerdictModel
from .loop.event_store import TimelineEventType, TimelineService
from .loop.issue_store import IssueRepository

logger = structlog.get_logger()

Verdict = Literal["GREEN", "RED"]


class _EvidenceModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentObservation(_EvidenceModel):
    deployment_id: int
    environment: str
    sha: str
    status: str
    is_authentic: bool
    observed_at: str


class HealthCheck(_EvidenceModel):
    endpoint: str
    status: int
    response_time: Optional[float] = None
    timestamp: Optional[str] = None


class IntegrationTests(_EvidenceModel):
    passed: int
    failed: int
    skipped: int = 0
    duration: Optional[float] = None


class ErrorRates(_EvidenceModel):
    current: float
    threshold: float


class VerificationEvidence(_EvidenceModel):
    """Evidence collected after a merge, submitted for a verdict."""

    deployment_observations: List[DeploymentObservation]
    health_checks: Optional[List[HealthCheck]] = None
    integration_tests: Optional[IntegrationTests] = None
    error_rates: Optional[ErrorRates] = None


@dataclass
class EvaluationResult:
    verdict: Verdict
    rationale: str
    failed_checks: List[str] = field(default_factory=list)
    evaluation_rules: List[str] = field(default_factory=list)


def evaluate_verdict(evidence: VerificationEvidence) -> EvaluationResult:
    """Evaluate evidence into a verdict. Same evidence, same verdict."""
    rules: List[str] = ["RULE_AUTHENTIC_DEPLOYMENT"]

    if not any(
        d.is_authentic and d.status == "success" for d in evidence.deployment_observations
    ):
        return EvaluationResult(
            verdict="RED",
            rationale="Deployment verification failed: No authentic successful deployment",
            failed_checks=["No authentic successful deployment found"],
            evaluation_rules=rules,
        )

    if evidence.health_checks:
        rules.append("RULE_HEALTH_CHECKS")
        failed = [
            f"Health check failed: {hc.endpoint} returned {hc.status}"
            for hc in evidence.health_checks
            if not 200 <= hc.status < 300
        ]
        if failed:
            return EvaluationResult("RED", "Health checks failed", failed, rules)

    if evidence.integration_tests is not None:
        rules.append("RULE_INTEGRATION_TESTS")
        if evidence.integration_tests.failed > 0:
            return EvaluationResult(
                "RED",
                "Integration tests failed",
                [f"Integration tests failed: {evidence.integration_tests.failed} failures"],
                rules,
            )

    if evidence.error_rates is not None:
        rules.append("RULE_ERROR_RATES")
        rates = evidence.error_rates
        if rates.current > rates.threshold:
            return EvaluationResult(
                "RED",
                "Error rate exceeds threshold",
                [f"Error rate {rates.current} exceeds threshold {rates.threshold}"],
                rules,
            )

    return EvaluationResult("GREEN", "All verification checks passed", [], rules)


class VerificationService:
    """Evaluates evidence and stores verdicts for issues."""

    def __init__(self, db: Session):
        self.db = db
        self.issues = IssueRepository(db)
        self.timeline = TimelineService(db)

    def record(
        self,
        issue_id: str,
        evidence: VerificationEvidence,
        run_id: Optional[str] = None,
        actor: str = "system",
    ) -> VerificationVerdictModel:
        """Evaluate ``evidence`` and persist the verdict.

        Raises:
            IssueNotFoundError: if the issue does not exist
        """
        self.issues.require(issue_id)
        result = evaluate_verdict(evidence)

        verdict = VerificationVerdictModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            run_id=run_id,
            verdict=result.verdict,
            rationale=result.rationale,
            failed_checks=result.failed_checks,
            evaluation_rules=result.evaluation_rules,
            evidence=evidence.model_dump(by_alias=True),
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(verdict)
        self.db.commit()
        self.db.refresh(verdict)

        self.timeline.record(
            issue_id,
            TimelineEventType.VERDICT_SET,
            {
                "verdictId": verdict.id,
                "verdict": result.verdict,
                "rationale": result.rationale,
                "failedChecks": result.failed_checks,
                "evaluationRules": result.evaluation_rules,
                "runId": run_id,
            },
            actor=actor,
            actor_type="user" if actor != "system" else "system",
        )
        logger.info(
            "verdict_recorded",
            issue_id=issue_id,
            verdict_id=verdict.id,
            verdict=result.verdict,
        )
        return verdict

    def latest(self, issue_id: str) -> Optional[VerificationVerdictModel]:
        return self.issues.latest_verdict(issue_id)

    def list_for_issue(self, issue_id: str) -> List[Dict[str, Any]]:
        verdicts = (
            self.db.query(VerificationVerdictModel)
            .filter(VerificationVerdictModel.issue_id == issue_id)
            .order_by(VerificationVerdictModel.created_at.desc())
            .all()
        )
        return [v.to_dict() for v in verdicts]
