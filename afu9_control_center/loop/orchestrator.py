"""
Loop Orchestrator.

Drives one step per run for an issue:

1. Create the run (pending -> running) and a step record
2. Invoke the step executor with the caller's mode
3. Complete the step (completed / skipped when blocked / failed)
4. Complete the run (completed / blocked / failed)

Blocked results are normal outcomes. Exceptions raised by an executor mark
the step and the run failed and are re-raised to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from .issue_store import IssueRepository
from .mesh import WorkflowMesh
from .results import StepContext, StepResult
from .run_store import LoopEventType, LoopRunStatus, LoopRunStore, LoopStepStatus
from .state import ExecutionMode, LoopStep, StepResolution, resolve_next_step
from .steps import get_executor_class

logger = structlog.get_logger()


@dataclass
class LoopRunOutcome:
    """What a single orchestrated run produced."""

    run_id: str
    run_status: LoopRunStatus
    step: Optional[LoopStep] = None
    result: Optional[StepResult] = None
    resolution: Optional[StepResolution] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.result is not None:
            data = self.result.to_dict()
        else:
            resolution = self.resolution or StepResolution(step=None)
            message = resolution.blocker_message or "No step to run"
            code = resolution.blocker_code.value if resolution.blocker_code else None
            data = {
                "success": not resolution.blocked,
                "blocked": resolution.blocked,
                "blockerCode": code,
                "blockerMessage": resolution.blocker_message if resolution.blocked else None,
                "stateBefore": None,
                "stateAfter": None,
                "fieldsChanged": [],
                "message": message,
                "durationMs": None,
            }
        data["runId"] = self.run_id
        data["runStatus"] = self.run_status.value
        data["step"] = self.step.value if self.step else None
        return data


class LoopOrchestrator:
    """Selects and runs lifecycle steps for issues."""

    def __init__(
        self,
        db: Session,
        github: Any = None,
        mesh: Optional[WorkflowMesh] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.github = github
        self.mesh = mesh
        self.settings = settings or get_settings()
        self.issues = IssueRepository(db)
        self.runs = LoopRunStore(db)

    async def run_step(
        self,
        issue_id: str,
        step: LoopStep,
        actor: str,
        request_id: str,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
        params: Optional[Dict[str, Any]] = None,
    ) -> LoopRunOutcome:
        """Run ``step`` for an issue inside a new loop run.

        Raises:
            IssueNotFoundError: if the issue does not exist (no run is created)
        """
        step = LoopStep(step)
        mode = ExecutionMode(mode)
        self.issues.require(issue_id)

        run = self.runs.create_run(
            issue_id, actor=actor, request_id=request_id, mode=mode, metadata={"step": step.value}
        )
        run_id = run.id
        log = logger.bind(
            issue_id=issue_id, run_id=run_id, request_id=request_id, step=step.value, mode=mode.value
        )
        self.runs.start_run(run_id)
        self.runs.record_event(
            issue_id,
            run_id,
            LoopEventType.RUN_STARTED,
            {"step": step.value, "mode": mode.value, "requestId": request_id, "actor": actor},
        )
        step_record = self.runs.create_step(run_id, step, step_number=1)
        log.info("loop_run_started")

        executor = get_executor_class(step)(
            self.db, github=self.github, mesh=self.mesh, settings=self.settings
        )
        ctx = StepContext(
            issue_id=issue_id,
            run_id=run_id,
            request_id=request_id,
            actor=actor,
            mode=mode,
            params=params or {},
        )

        started = time.monotonic()
        try:
            result = await executor.execute(ctx)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            log.exception("loop_run_failed", error=str(e))
            self.db.rollback()
            self.runs.complete_step(
                step_record.id, LoopStepStatus.FAILED, duration_ms=duration_ms, error_message=str(e)
            )
            self.runs.complete_run(
                run_id, LoopRunStatus.FAILED, duration_ms=duration_ms, error_message=str(e)
            )
            self.runs.record_event(
                issue_id,
                run_id,
                LoopEventType.RUN_FAILED,
                {"step": step.value, "error": str(e), "requestId": request_id},
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        step_metadata = {
            "stateBefore": result.state_before,
            "stateAfter": result.state_after,
            "message": result.message,
        }

        if result.blocked:
            step_metadata["blockerCode"] = result.blocker_code.value
            step_metadata["blockerMessage"] = result.blocker_message
            self.runs.complete_step(
                step_record.id, LoopStepStatus.SKIPPED, duration_ms=duration_ms, metadata=step_metadata
            )
            self.runs.complete_run(
                run_id,
                LoopRunStatus.BLOCKED,
                duration_ms=duration_ms,
                metadata={"blockerCode": result.blocker_code.value},
            )
            self.runs.record_event(
                issue_id,
                run_id,
                LoopEventType.RUN_BLOCKED,
                {
                    "step": step.value,
                    "blockerCode": result.blocker_code.value,
                    "blockerMessage": result.blocker_message,
                    "requestId": request_id,
                },
            )
            log.info("loop_run_blocked", blocker_code=result.blocker_code.value)
            return LoopRunOutcome(
                run_id=run_id, run_status=LoopRunStatus.BLOCKED, step=step, result=result
            )

        step_metadata["fieldsChanged"] = list(result.fields_changed)
        self.runs.complete_step(
            step_record.id, LoopStepStatus.COMPLETED, duration_ms=duration_ms, metadata=step_metadata
        )
        self.runs.complete_run(run_id, LoopRunStatus.COMPLETED, duration_ms=duration_ms)
        self.runs.record_event(
            issue_id,
            run_id,
            LoopEventType.RUN_FINISHED,
            {
                "step": step.value,
                "stateBefore": result.state_before,
                "stateAfter": result.state_after,
                "requestId": request_id,
            },
        )
        log.info("loop_run_finished", state_after=result.state_after)
        return LoopRunOutcome(
            run_id=run_id, run_status=LoopRunStatus.COMPLETED, step=step, result=result
        )

    def resolve(self, issue_id: str) -> StepResolution:
        """Resolve the next step for an issue without running anything."""
        issue = self.issues.require(issue_id)
        draft = self.issues.get_draft_for_issue(issue)
        return resolve_next_step(issue, draft)

    async def run_next_step(
        self,
        issue_id: str,
        actor: str,
        request_id: str,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
    ) -> LoopRunOutcome:
        """Resolve the next step for an issue and run it.

        When no step applies, a run is still recorded so the attempt shows up
        in the issue's history.
        """
        resolution = self.resolve(issue_id)
        if resolution.step is not None:
            return await self.run_step(issue_id, resolution.step, actor, request_id, mode)

        mode = ExecutionMode(mode)
        run = self.runs.create_run(
            issue_id, actor=actor, request_id=request_id, mode=mode, metadata={"step": None}
        )
        status = LoopRunStatus.BLOCKED if resolution.blocked else LoopRunStatus.COMPLETED
        metadata = {"resolution": resolution.to_dict()}
        self.runs.complete_run(run.id, status, duration_ms=0, metadata=metadata)
        if resolution.blocked:
            self.runs.record_event(
                issue_id,
                run.id,
                LoopEventType.RUN_BLOCKED,
                {
                    "blockerCode": resolution.blocker_code.value,
                    "blockerMessage": resolution.blocker_message,
                    "requestId": request_id,
                },
            )
        logger.info(
            "loop_no_step",
            issue_id=issue_id,
            run_id=run.id,
            blocked=resolution.blocked,
            message=resolution.blocker_message,
        )
        return LoopRunOutcome(run_id=run.id, run_status=status, resolution=resolution)
