"""S5 - Merge.

Merges the issue's pull request once the merge gate passes, applies the
workflow mesh update and moves the issue REVIEW_READY -> DONE.

Idempotency is decided by GitHub, not local flags: a PR that GitHub reports
as merged skips the merge call and goes straight to the mesh update and the
transition.

If the merge succeeds and the mesh update fails the step is blocked with
MESH_UPDATE_FAILED and the merge stays in place. Invoking S5 again takes the
already-merged path and completes the mesh update.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from ...db.models import IssueModel
from ...github.client import GitHubError
from ...github.urls import PullRequestRef, parse_pr_url
from ..event_store import TimelineEventType
from ..gate import build_checks_snapshot, evaluate_gate
from ..mesh import MergeUpdate
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep, blocker_code_for_gate_reason
from .base import StepExecutor

logger = structlog.get_logger()


class MergeExecutor(StepExecutor):
    step = LoopStep.S5_MERGE
    success_event = TimelineEventType.MERGED

    def is_satisfied(self, issue: IssueModel) -> bool:
        return issue.status == IssueState.DONE.value

    def noop_details(self, issue: IssueModel):
        return {"prUrl": issue.pr_url, "mergeSha": issue.merge_sha}

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.REVIEW_READY:
            return self.wrong_state(issue, IssueState.REVIEW_READY.value)

        if not (issue.pr_url or "").strip():
            return self.blocked(
                issue, BlockerCode.NO_PR_LINKED, "Cannot execute S5: No PR linked to issue"
            )

        ref = parse_pr_url(issue.pr_url)
        if ref is None:
            return self.blocked(
                issue,
                BlockerCode.NO_PR_LINKED,
                f"Cannot execute S5: Invalid PR URL format: {issue.pr_url}",
            )

        log = logger.bind(
            issue_id=issue.id,
            run_id=ctx.run_id,
            repo=ref.full_name,
            pr_number=ref.number,
        )

        try:
            pr = await self.github.get_pr(ref.owner, ref.repo, ref.number)
        except GitHubError as e:
            log.error("s5_pr_fetch_failed", error=e.message)
            return self.blocked(
                issue, BlockerCode.PR_NOT_FOUND, f"Failed to fetch PR: {e.message}"
            )

        if pr.merged:
            log.info("s5_pr_already_merged", merge_sha=pr.merge_commit_sha)
            return self._complete(
                issue,
                state,
                ctx,
                ref,
                merge_sha=pr.merge_commit_sha,
                merge_method="unknown",
                message="PR already merged (idempotent success)",
                idempotent=True,
            )

        if pr.state == "closed":
            return self.blocked(
                issue, BlockerCode.PR_CLOSED, "Cannot execute S5: PR is closed without merge"
            )

        try:
            reviews = await self.github.list_reviews(ref.owner, ref.repo, ref.number)
        except GitHubError as e:
            return self.blocked(
                issue,
                blocker_code_for_gate_reason("PR_FETCH_FAILED"),
                f"Failed to fetch PR reviews: {e.message}",
            )

        try:
            checks = await self.github.list_check_runs(
                ref.owner, ref.repo, pr.head_sha or f"refs/pull/{ref.number}/head"
            )
        except GitHubError as e:
            log.error("s5_snapshot_failed", error=e.message)
            return self.blocked(
                issue,
                BlockerCode.SNAPSHOT_FETCH_FAILED,
                f"Failed to capture checks snapshot: {e.message}",
            )

        snapshot = build_checks_snapshot(pr.head_sha, checks)
        decision = evaluate_gate(reviews, snapshot)
        log.info(
            "s5_gate_decision",
            verdict=decision.verdict,
            block_reason=decision.block_reason,
            review_status=decision.review_status,
            checks_status=decision.checks_status,
        )

        if not decision.passed:
            return self.blocked(
                issue,
                blocker_code_for_gate_reason(decision.block_reason),
                decision.block_message or "S5 gate decision failed - merge blocked",
                gateDecision=decision.to_dict(),
                checksSnapshot=snapshot.to_dict(),
            )

        merge_method = self.settings.default_merge_method
        gate_details = {
            "gateDecision": decision.to_dict(),
            "checksSnapshot": snapshot.to_dict(),
        }

        if ctx.dry_run:
            return self._complete(
                issue,
                state,
                ctx,
                ref,
                merge_sha=None,
                merge_method=merge_method,
                message=f"S5 dry run: Would merge PR #{ref.number} ({merge_method})",
                **gate_details,
            )

        try:
            merge = await self.github.merge_pr(ref.owner, ref.repo, ref.number, merge_method)
        except GitHubError as e:
            code = (
                BlockerCode.MERGE_CONFLICT
                if "conflict" in e.message.lower()
                else BlockerCode.MERGE_FAILED
            )
            log.error("s5_merge_failed", error=e.message, blocker_code=code.value)
            return self.blocked(issue, code, f"Merge failed: {e.message}", **gate_details)

        log.info("s5_pr_merged", merge_sha=merge.sha, merge_method=merge_method)
        return self._complete(
            issue,
            state,
            ctx,
            ref,
            merge_sha=merge.sha,
            merge_method=merge_method,
            message=f"S5 completed: PR merged successfully (SHA: {merge.sha})",
            **gate_details,
        )

    def _complete(
        self,
        issue: IssueModel,
        state: IssueState,
        ctx: StepContext,
        ref: PullRequestRef,
        merge_sha: Optional[str],
        merge_method: str,
        message: str,
        **details: Any,
    ) -> StepResult:
        """Apply the mesh update and move the issue to DONE."""
        if not ctx.dry_run:
            mesh_result = self.mesh.apply_merge(
                MergeUpdate(
                    issue_id=issue.id,
                    run_id=ctx.run_id,
                    request_id=ctx.request_id,
                    pr_url=issue.pr_url,
                    merge_sha=merge_sha,
                    merge_method=merge_method,
                )
            )
            if not mesh_result.ok:
                return self.blocked(
                    issue,
                    BlockerCode.MESH_UPDATE_FAILED,
                    mesh_result.message,
                    prUrl=issue.pr_url,
                    mergeSha=merge_sha,
                    mergeMethod=merge_method,
                    **details,
                )

        fields = {"merge_sha": merge_sha} if merge_sha else {}
        return self.transition(
            issue,
            state,
            IssueState.DONE,
            message,
            ctx,
            fields=fields,
            prUrl=issue.pr_url,
            prNumber=ref.number,
            mergeSha=merge_sha,
            mergeMethod=merge_method,
            **details,
        )
