"""
Merge gate decision.

Pure evaluation of a pull request's reviews and checks snapshot into a
PASS/FAIL verdict, consulted by S4 before review and by S5 before merging.

Rules, evaluated in order (first failure wins):
- the latest review of any reviewer is CHANGES_REQUESTED -> CHANGES_REQUESTED
- no reviewer's latest review is APPROVED -> NO_REVIEW_APPROVAL
- the snapshot holds no check runs -> NO_CHECKS_FOUND
- any check run concluded unsuccessfully -> CHECKS_FAILED
- any check run has not completed -> CHECKS_PENDING
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..github.client import CheckRun, Review

PASSING_CONCLUSIONS = frozenset({"success", "neutral", "skipped"})


@dataclass(frozen=True)
class ChecksSnapshot:
    """Point-in-time summary of a PR's check runs."""

    head_sha: Optional[str]
    total: int
    passed: int
    failed: int
    pending: int
    failed_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "headSha": self.head_sha,
            "totalChecks": self.total,
            "passedChecks": self.passed,
            "failedChecks": self.failed,
            "pendingChecks": self.pending,
            "failedCheckNames": list(self.failed_names),
        }


@dataclass(frozen=True)
class GateDecision:
    verdict: str  # PASS | FAIL
    review_status: str  # APPROVED | CHANGES_REQUESTED | NOT_APPROVED
    checks_status: str  # PASSED | FAILED | PENDING | NONE
    block_reason: Optional[str] = None
    block_message: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.verdict == "PASS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "reviewStatus": self.review_status,
            "checksStatus": self.checks_status,
            "blockReason": self.block_reason,
            "blockMessage": self.block_message,
        }


def build_checks_snapshot(head_sha: Optional[str], checks: Iterable[CheckRun]) -> ChecksSnapshot:
    total = passed = failed = pending = 0
    failed_names: List[str] = []
    for check in checks:
        total += 1
        if check.status != "completed":
            pending += 1
        elif (check.conclusion or "") in PASSING_CONCLUSIONS:
            passed += 1
        else:
            failed += 1
            failed_names.append(check.name)
    return ChecksSnapshot(
        head_sha=head_sha,
        total=total,
        passed=passed,
        failed=failed,
        pending=pending,
        failed_names=failed_names,
    )


def review_status(reviews: Iterable[Review]) -> str:
    """Collapse reviews to one status using each reviewer's latest decision.

    COMMENTED reviews do not replace an earlier decision.
    """
    latest: Dict[str, str] = {}
    ordered = sorted(reviews, key=lambda r: r.submitted_at or "")
    for review in ordered:
        if review.state in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
            latest[review.user] = review.state

    states = set(latest.values())
    if "CHANGES_REQUESTED" in states:
        return "CHANGES_REQUESTED"
    if "APPROVED" in states:
        return "APPROVED"
    return "NOT_APPROVED"


def checks_status(snapshot: ChecksSnapshot) -> str:
    if snapshot.total == 0:
        return "NONE"
    if snapshot.failed:
        return "FAILED"
    if snapshot.pending:
        return "PENDING"
    return "PASSED"


def evaluate_gate(reviews: Iterable[Review], snapshot: ChecksSnapshot) -> GateDecision:
    """Combine reviews and checks into a merge gate decision."""
    reviews_state = review_status(reviews)
    checks_state = checks_status(snapshot)

    def fail(reason: str, message: str) -> GateDecision:
        return GateDecision(
            verdict="FAIL",
            review_status=reviews_state,
            checks_status=checks_state,
            block_reason=reason,
            block_message=message,
        )

    if reviews_state == "CHANGES_REQUESTED":
        return fail("CHANGES_REQUESTED", "A reviewer requested changes")
    if reviews_state != "APPROVED":
        return fail("NO_REVIEW_APPROVAL", "Pull request has no approving review")
    if checks_state == "NONE":
        return fail("NO_CHECKS_FOUND", "No checks found for the pull request head")
    if checks_state == "FAILED":
        names = ", ".join(snapshot.failed_names)
        return fail("CHECKS_FAILED", f"{snapshot.failed} check(s) failed: {names}")
    if checks_state == "PENDING":
        return fail("CHECKS_PENDING", f"{snapshot.pending} check(s) still pending")

    return GateDecision(verdict="PASS", review_status=reviews_state, checks_status=checks_state)
