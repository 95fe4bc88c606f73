"""S8 - Close (GREEN path, terminal).

Requires VERIFIED and a GREEN latest verdict. The closure record and the
VERIFIED -> CLOSED transition are written together; a second close finds the
existing record and reports it instead of creating another.
"""

from __future__ import annotations

from ...db.models import IssueModel
from ..event_store import TimelineEventType
from ..issue_store import StaleIssueStateError
from ..results import StepContext, StepResult
from ..state import BlockerCode, IssueState, LoopStep
from .base import StepExecutor


class CloseExecutor(StepExecutor):
    step = LoopStep.S8_CLOSE
    success_event = TimelineEventType.ISSUE_CLOSED

    def is_satisfied(self, issue: IssueModel) -> bool:
        return (
            issue.status == IssueState.CLOSED.value
            and self.issues.get_closure(issue.id) is not None
        )

    def noop_details(self, issue: IssueModel):
        closure = self.issues.get_closure(issue.id)
        return {
            "closureId": closure.id,
            "verdictId": closure.verification_verdict_id,
            "idempotent": True,
        }

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state != IssueState.VERIFIED:
            return self.wrong_state(issue, IssueState.VERIFIED.value)

        verdict = self.issues.latest_verdict(issue.id)
        if verdict is None:
            return self.blocked(
                issue,
                BlockerCode.NO_GREEN_VERDICT,
                "No verification verdict found for issue",
            )
        if verdict.verdict != "GREEN":
            return self.blocked(
                issue,
                BlockerCode.NO_GREEN_VERDICT,
                f"Latest verification verdict is {verdict.verdict}, expected GREEN",
                verdictId=verdict.id,
            )

        if ctx.dry_run:
            return self.succeeded(
                issue,
                IssueState.CLOSED.value,
                "S8 dry run: Would close issue",
                fields_changed=["status"],
                verdictId=verdict.id,
            )

        try:
            closure_id = self.issues.close_issue(issue.id, ctx.run_id, verdict.id)
        except StaleIssueStateError as e:
            return self.blocked(issue, BlockerCode.INVARIANT_VIOLATION, e.message)

        if closure_id is None:
            existing = self.issues.get_closure(issue.id)
            if existing is None:
                return self.blocked(
                    issue,
                    BlockerCode.INVARIANT_VIOLATION,
                    "Closure conflict reported but no closure record exists",
                )
            return self.succeeded(
                issue,
                IssueState.CLOSED.value,
                f"Issue already closed (closure {existing.id})",
                closureId=existing.id,
                verdictId=existing.verification_verdict_id,
                idempotent=True,
            )

        return self.succeeded(
            issue,
            IssueState.CLOSED.value,
            f"S8 complete: Issue closed (closure {closure_id})",
            fields_changed=["status"],
            closureId=closure_id,
            verdictId=verdict.id,
        )
