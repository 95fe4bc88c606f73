"""
Shared driver for the S1-S9 step executors.

Every executor goes through ``StepExecutor.execute``:

1. load the issue (a missing issue is a hard error, not a blocked result)
2. run the executor's parameter checks (``validate_params``)
3. refuse statuses outside the known state set (UNKNOWN_STATE)
4. return a no-op success if the executor's postcondition already holds
5. otherwise call ``run``
6. append exactly one timeline event for the invocation

Executors implement ``run`` and, where the step has a postcondition,
``is_satisfied``. They never write timeline events themselves.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ...config import Settings, get_settings
from ...db.models import IssueModel
from ..event_store import TimelineEventType, TimelineService
from ..issue_store import IssueRepository
from ..mesh import DatabaseWorkflowMesh, WorkflowMesh
from ..results import StepBlocked, StepContext, StepResult, StepSuccess
from ..state import BlockerCode, IssueState, LoopStep, parse_state

logger = structlog.get_logger()


class StepExecutor(ABC):
    """Base class for lifecycle step executors."""

    step: LoopStep
    success_event: TimelineEventType

    def __init__(
        self,
        db: Session,
        github: Any = None,
        mesh: Optional[WorkflowMesh] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.github = github
        self.mesh = mesh or DatabaseWorkflowMesh(db)
        self.settings = settings or get_settings()
        self.issues = IssueRepository(db)
        self.timeline = TimelineService(db)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def validate_params(self, ctx: StepContext) -> Optional[Tuple[BlockerCode, str]]:
        """Check step inputs before the issue state is inspected."""
        return None

    def is_satisfied(self, issue: IssueModel) -> bool:
        """Whether the step's postcondition already holds for ``issue``."""
        return False

    def noop_details(self, issue: IssueModel) -> Dict[str, Any]:
        """Extra evidence fields for a no-op success."""
        return {}

    @abstractmethod
    async def run(
        self, issue: IssueModel, state: IssueState, ctx: StepContext
    ) -> StepResult:
        """Evaluate preconditions and apply the step's effects."""

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    def blocked(
        self, issue: IssueModel, code: BlockerCode, message: str, **details: Any
    ) -> StepBlocked:
        return StepBlocked(
            step=self.step,
            state_before=issue.status,
            code=code,
            message=message,
            details=details,
        )

    def succeeded(
        self,
        issue: IssueModel,
        state_after: str,
        message: str,
        fields_changed: Optional[List[str]] = None,
        **details: Any,
    ) -> StepSuccess:
        return StepSuccess(
            step=self.step,
            state_before=issue.status,
            state_after=state_after,
            message=message,
            fields_changed=fields_changed or [],
            details=details,
        )

    def wrong_state(self, issue: IssueModel, expected: str) -> StepBlocked:
        return self.blocked(
            issue,
            BlockerCode.INVARIANT_VIOLATION,
            f"Cannot execute {self.step.value}: Issue is in state {issue.status}, "
            f"expected {expected}",
        )

    def transition(
        self,
        issue: IssueModel,
        expected: IssueState,
        new_state: IssueState,
        message: str,
        ctx: StepContext,
        fields: Optional[Dict[str, Any]] = None,
        **details: Any,
    ) -> StepResult:
        """Apply ``expected -> new_state`` (execute mode) and build the result.

        ``fields`` are extra issue columns written in the same UPDATE. In
        dry-run mode nothing is written and the success is simulated.
        """
        fields = fields or {}
        if not ctx.dry_run:
            if not self.issues.transition(issue.id, expected, new_state, **fields):
                return self.blocked(
                    issue,
                    BlockerCode.INVARIANT_VIOLATION,
                    f"Concurrent transition: issue is no longer in state {expected.value}",
                )
        return self.succeeded(
            issue,
            new_state.value,
            message,
            fields_changed=["status"] + sorted(fields),
            **details,
        )

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    async def execute(self, ctx: StepContext) -> StepResult:
        """Run the step for ``ctx.issue_id`` and record its evidence."""
        started = time.monotonic()
        log = logger.bind(
            issue_id=ctx.issue_id,
            run_id=ctx.run_id,
            request_id=ctx.request_id,
            step=self.step.value,
            mode=ctx.mode.value,
        )

        issue = self.issues.require(ctx.issue_id)
        # Snapshot before run(); executors may refresh the row
        state_before = issue.status

        param_error = self.validate_params(ctx)
        state = parse_state(issue.status)
        if param_error is not None:
            result: StepResult = self.blocked(issue, *param_error)
        elif state is None:
            result = self.blocked(
                issue,
                BlockerCode.UNKNOWN_STATE,
                f"Unknown issue status: {issue.status}",
            )
        elif self.is_satisfied(issue):
            result = self.succeeded(
                issue,
                issue.status,
                f"Already in {issue.status}, {self.step.value} is a no-op",
                isNoOp=True,
                **self.noop_details(issue),
            )
        else:
            result = await self.run(issue, state, ctx)

        result.state_before = state_before
        result.duration_ms = int((time.monotonic() - started) * 1000)

        self._record_evidence(ctx, result)

        if result.blocked:
            log.warning(
                "step_blocked",
                blocker_code=result.blocker_code.value,
                blocker_message=result.blocker_message,
                state=state_before,
            )
        else:
            log.info(
                "step_completed",
                state_before=state_before,
                state_after=result.state_after,
                fields_changed=result.fields_changed,
                duration_ms=result.duration_ms,
            )
        return result

    def _record_evidence(self, ctx: StepContext, result: StepResult) -> None:
        event_data: Dict[str, Any] = {
            "runId": ctx.run_id,
            "step": self.step.value,
            "stateBefore": result.state_before,
            "stateAfter": result.state_after,
            "requestId": ctx.request_id,
            "blocked": result.blocked,
            "mode": ctx.mode.value,
            "message": result.message,
        }
        if result.blocked:
            event_data["blockerCode"] = result.blocker_code.value
            event_data["blockerMessage"] = result.blocker_message
        elif result.fields_changed:
            event_data["fieldsChanged"] = list(result.fields_changed)
        if ctx.dry_run:
            event_data["simulated"] = True
        for key, value in result.details.items():
            event_data.setdefault(key, value)

        event_type = (
            TimelineEventType.STEP_BLOCKED if result.blocked else self.success_event
        )
        self.timeline.record(
            issue_id=ctx.issue_id,
            event_type=event_type,
            event_data=event_data,
            actor=ctx.actor,
            run_id=ctx.run_id,
            step=self.step.value,
        )
