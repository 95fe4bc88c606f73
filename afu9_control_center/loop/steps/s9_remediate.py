"""S9 - Remediate (RED path, any non-terminal state -> HOLD).

Check order: the issue must exist (hard error), then a non-empty remediation
reason, then the issue must not be CLOSED/KILLED, then the state must be one
S9 may leave. An issue already on HOLD gains another remediation record.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ...db.models import IssueModel
from ..event_store import TimelineEventType
from ..issue_store import StaleIssueStateError
from ..results import StepContext, StepResult
from ..state import (
    REMEDIABLE_STATES,
    TERMINAL_STATES,
    BlockerCode,
    IssueState,
    LoopStep,
)
from .base import StepExecutor


class RemediateExecutor(StepExecutor):
    step = LoopStep.S9_REMEDIATE
    success_event = TimelineEventType.REMEDIATION_RECORDED

    def validate_params(self, ctx: StepContext) -> Optional[Tuple[BlockerCode, str]]:
        reason = ctx.params.get("remediation_reason")
        if not isinstance(reason, str) or not reason.strip():
            return BlockerCode.NO_REMEDIATION_REASON, "Remediation reason is required"
        return None

    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        if state in TERMINAL_STATES:
            return self.blocked(
                issue,
                BlockerCode.INVALID_STATE_FOR_HOLD,
                f"Cannot place issue on HOLD: issue is {state.value} and immutable",
            )
        if state not in REMEDIABLE_STATES:
            return self.blocked(
                issue,
                BlockerCode.INVALID_STATE_FOR_HOLD,
                f"Cannot place issue on HOLD from state {state.value}",
            )

        reason = ctx.params["remediation_reason"].strip()
        failed_checks = list(ctx.params.get("failed_checks") or [])
        # "blockerCode" is reserved for blocked events in the evidence payload
        details = {
            "remediationReason": reason,
            "failedStep": ctx.params.get("failed_step"),
            "remediationBlockerCode": ctx.params.get("blocker_code"),
            "failedChecks": failed_checks,
        }
        fields_changed = [] if state == IssueState.HOLD else ["status"]

        if ctx.dry_run:
            return self.succeeded(
                issue,
                IssueState.HOLD.value,
                "S9 dry run: Would place issue on HOLD",
                fields_changed=fields_changed,
                **details,
            )

        try:
            remediation_id = self.issues.record_remediation(
                issue.id,
                expected=state,
                reason=reason,
                run_id=ctx.run_id,
                failed_step=ctx.params.get("failed_step"),
                blocker_code=ctx.params.get("blocker_code"),
                red_verdict=ctx.params.get("red_verdict"),
                failed_checks=failed_checks,
                created_by=ctx.actor,
            )
        except StaleIssueStateError as e:
            return self.blocked(issue, BlockerCode.INVARIANT_VIOLATION, e.message)

        if state == IssueState.HOLD:
            message = "S9 complete: Additional remediation recorded, issue remains on HOLD"
        else:
            message = f"S9 complete: Issue placed on HOLD from {state.value}"

        return self.succeeded(
            issue,
            IssueState.HOLD.value,
            message,
            fields_changed=fields_changed,
            remediationId=remediation_id,
            **details,
        )
