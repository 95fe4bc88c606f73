"""S7 - Verify Gate: DONE -> VERIFIED on a GREEN verification verdict."""

from __future__ import annotations

from ...db.models import IssueModel
from ..event_store import TimelineEventType
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep
from .base import StepExecutor


class VerifyGateExecutor(StepExecutor):
    step = LoopStep.S7_VERIFY_GATE
    success_event = TimelineEventType.VERIFIED

    def is_satisfied(self, issue: IssueModel) -> bool:
        return issue.status == IssueState.VERIFIED.value

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.DONE:
            return self.wrong_state(issue, IssueState.DONE.value)

        verdict = self.issues.latest_verdict(issue.id)
        if verdict is None:
            return self.blocked(
                issue,
                BlockerCode.NOT_VERIFIED,
                "No verification verdict recorded for issue",
            )

        if verdict.verdict != "GREEN":
            failed = ", ".join(verdict.failed_checks or []) or "none reported"
            return self.blocked(
                issue,
                BlockerCode.NOT_VERIFIED,
                f"Latest verification verdict is {verdict.verdict} (failed checks: {failed})",
                verdictId=verdict.id,
            )

        return self.transition(
            issue,
            state,
            IssueState.VERIFIED,
            "S7 complete: Verification verdict is GREEN",
            ctx,
            verdictId=verdict.id,
        )
