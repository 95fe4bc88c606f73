"""S1 - Pick/Link Issue.

Requires a GitHub link. Claims the issue for the actor if nobody holds it.
Never changes the lifecycle status.
"""

from __future__ import annotations

from ...db.models import IssueModel
from ..event_store import TimelineEventType
from ..results import StepContext, StepResult
from ..state import TERMINAL_STATES, BlockerCode, IssueState, LoopStep
from .base import StepExecutor


class PickIssueExecutor(StepExecutor):
    step = LoopStep.S1_PICK_ISSUE
    success_event = TimelineEventType.ISSUE_PICKED

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state in TERMINAL_STATES:
            return self.blocked(
                issue,
                BlockerCode.INVARIANT_VIOLATION,
                f"Cannot pick issue in terminal state {state.value}",
            )

        if not (issue.github_url or "").strip():
            return self.blocked(
                issue,
                BlockerCode.NO_GITHUB_LINK,
                "Cannot execute S1: Issue has no GitHub link",
            )

        if (issue.assignee or "").strip():
            return self.succeeded(
                issue,
                state.value,
                f"S1 complete: Issue already assigned to {issue.assignee}",
                githubUrl=issue.github_url,
                assignee=issue.assignee,
            )

        if ctx.dry_run:
            return self.succeeded(
                issue,
                state.value,
                f"S1 dry run: Would assign issue to {ctx.actor}",
                githubUrl=issue.github_url,
            )

        if not self.issues.assign_if_unassigned(issue.id, ctx.actor):
            # Someone claimed it between our read and write
            self.db.refresh(issue)
            return self.succeeded(
                issue,
                state.value,
                f"S1 complete: Issue already assigned to {issue.assignee}",
                githubUrl=issue.github_url,
                assignee=issue.assignee,
            )

        return self.succeeded(
            issue,
            state.value,
            f"S1 complete: Issue assigned to {ctx.actor}",
            fields_changed=["assignee"],
            githubUrl=issue.github_url,
            assignee=ctx.actor,
        )
