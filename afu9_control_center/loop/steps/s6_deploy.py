"""S6 - Deployment Observation.

Read-only: looks up GitHub deployments for the merge commit of the issue's
PR and reports what it found. Zero deployments is a valid outcome. Never
changes the lifecycle status and never triggers a deployment.
"""

from __future__ import annotations

from ...db.models import IssueModel
from ...github.client import GitHubError
from ...github.urls import parse_pr_url
from ..event_store import TimelineEventType
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep
from .base import StepExecutor


class DeploymentObserveExecutor(StepExecutor):
    step = LoopStep.S6_DEPLOYMENT_OBSERVE
    success_event = TimelineEventType.DEPLOYMENT_OBSERVED

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.DONE:
            return self.wrong_state(issue, IssueState.DONE.value)

        if not (issue.pr_url or "").strip():
            return self.blocked(
                issue, BlockerCode.NO_PR_LINKED, "Cannot execute S6: No PR linked to issue"
            )

        ref = parse_pr_url(issue.pr_url)
        if ref is None:
            return self.blocked(
                issue,
                BlockerCode.NO_PR_LINKED,
                f"Cannot execute S6: Invalid PR URL format: {issue.pr_url}",
            )

        try:
            pr = await self.github.get_pr(ref.owner, ref.repo, ref.number)
        except GitHubError as e:
            return self.blocked(
                issue, BlockerCode.GITHUB_API_ERROR, f"Failed to fetch PR: {e.message}"
            )

        if not pr.merged:
            return self.blocked(issue, BlockerCode.PR_NOT_MERGED, "PR is not merged yet")

        if not pr.merge_commit_sha:
            return self.blocked(
                issue,
                BlockerCode.INVARIANT_VIOLATION,
                "PR is merged but has no merge commit SHA",
            )

        try:
            deployments = await self.github.list_deployments(
                ref.owner, ref.repo, pr.merge_commit_sha
            )
        except GitHubError as e:
            return self.blocked(
                issue,
                BlockerCode.GITHUB_API_ERROR,
                f"Failed to list deployments: {e.message}",
            )

        count = len(deployments)
        if count:
            message = f"S6 complete: Observed {count} deployment(s)"
        else:
            message = "S6 complete: No deployments found"

        return self.succeeded(
            issue,
            state.value,
            message,
            prUrl=issue.pr_url,
            mergeSha=pr.merge_commit_sha,
            deploymentCount=count,
            deployments=[d.to_dict() for d in deployments],
        )
