"""S3 - Implement Prep: SPEC_READY -> IMPLEMENTING_PREP."""

from __future__ import annotations

from ...db.models import IssueModel
from ..event_store import TimelineEventType
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep
from .base import StepExecutor


class ImplementPrepExecutor(StepExecutor):
    step = LoopStep.S3_IMPLEMENT_PREP
    success_event = TimelineEventType.IMPLEMENT_PREP

    def is_satisfied(self, issue: IssueModel) -> bool:
        return issue.status == IssueState.IMPLEMENTING_PREP.value

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.SPEC_READY:
            return self.blocked(
                issue,
                BlockerCode.INVARIANT_VIOLATION,
                f"S3 requires state SPEC_READY, issue is {state.value}",
            )

        return self.transition(
            issue,
            state,
            IssueState.IMPLEMENTING_PREP,
            "S3 complete: Issue is in implementation prep",
            ctx,
        )
