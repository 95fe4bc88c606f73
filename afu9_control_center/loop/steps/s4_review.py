"""S4 - Review Gate.

An issue only reaches REVIEW_READY through an explicit S4 invocation with all
of: state IMPLEMENTING_PREP, a GitHub link, a parseable PR URL and a passing
review + checks gate decision.

The gate reads the PR's reviews and check runs; a dry run validates the links
and skips the gate.
"""

from __future__ import annotations

import structlog

from ...db.models import IssueModel
from ...github.client import GitHubError
from ...github.urls import parse_pr_url
from ..event_store import TimelineEventType
from ..gate import build_checks_snapshot, evaluate_gate
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep, blocker_code_for_gate_reason
from .base import StepExecutor

logger = structlog.get_logger()


class ReviewGateExecutor(StepExecutor):
    step = LoopStep.S4_REVIEW
    success_event = TimelineEventType.REVIEW_REQUESTED

    def is_satisfied(self, issue: IssueModel) -> bool:
        return issue.status == IssueState.REVIEW_READY.value

    def noop_details(self, issue: IssueModel):
        return {"prUrl": issue.pr_url}

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.IMPLEMENTING_PREP:
            return self.wrong_state(issue, IssueState.IMPLEMENTING_PREP.value)

        if not (issue.github_url or "").strip():
            return self.blocked(
                issue,
                BlockerCode.NO_GITHUB_LINK,
                "Cannot execute S4: Issue has no GitHub link",
            )

        if not (issue.pr_url or "").strip():
            return self.blocked(
                issue,
                BlockerCode.NO_PR_LINKED,
                "Cannot execute S4: No PR linked to issue",
            )

        ref = parse_pr_url(issue.pr_url)
        if ref is None:
            return self.blocked(
                issue,
                BlockerCode.NO_PR_LINKED,
                f"Cannot execute S4: Invalid PR URL format: {issue.pr_url}",
            )

        if ctx.dry_run:
            return self.transition(
                issue,
                state,
                IssueState.REVIEW_READY,
                "S4 dry run: Validation passed, gate decision skipped",
                ctx,
                prUrl=issue.pr_url,
                githubUrl=issue.github_url,
            )

        log = logger.bind(
            issue_id=issue.id,
            run_id=ctx.run_id,
            repo=ref.full_name,
            pr_number=ref.number,
        )

        try:
            pr = await self.github.get_pr(ref.owner, ref.repo, ref.number)
            reviews = await self.github.list_reviews(ref.owner, ref.repo, ref.number)
        except GitHubError as e:
            log.error("s4_pr_fetch_failed", error=e.message)
            return self.blocked(
                issue,
                blocker_code_for_gate_reason("PR_FETCH_FAILED"),
                f"Failed to fetch PR for review gate: {e.message}",
            )

        try:
            checks = await self.github.list_check_runs(
                ref.owner, ref.repo, pr.head_sha or f"refs/pull/{ref.number}/head"
            )
        except GitHubError as e:
            log.error("s4_snapshot_failed", error=e.message)
            return self.blocked(
                issue,
                BlockerCode.SNAPSHOT_FETCH_FAILED,
                f"Failed to capture checks snapshot: {e.message}",
            )

        snapshot = build_checks_snapshot(pr.head_sha, checks)
        decision = evaluate_gate(reviews, snapshot)
        log.info(
            "s4_gate_decision",
            verdict=decision.verdict,
            block_reason=decision.block_reason,
            review_status=decision.review_status,
            checks_status=decision.checks_status,
        )

        if not decision.passed:
            return self.blocked(
                issue,
                blocker_code_for_gate_reason(decision.block_reason),
                decision.block_message or "S4 gate decision failed",
                gateDecision=decision.to_dict(),
                checksSnapshot=snapshot.to_dict(),
            )

        return self.transition(
            issue,
            state,
            IssueState.REVIEW_READY,
            f"S4 complete: Gate decision PASS (review: {decision.review_status}, "
            f"checks: {decision.checks_status}), review requested for {issue.pr_url}",
            ctx,
            prUrl=issue.pr_url,
            githubUrl=issue.github_url,
            gateDecision=decision.to_dict(),
            checksSnapshot=snapshot.to_dict(),
        )
