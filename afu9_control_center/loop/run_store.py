"""
Loop Run Store.

Persists one record per loop invocation ("run") and one record per step
attempted inside it, plus run-level loop events. Runs are never mutated once
they reach a terminal status; ``complete_run`` enforces that with a
conditional UPDATE.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from ..db.loop_models import LoopEventModel, LoopRunModel, LoopRunStepModel
from .state import ExecutionMode, LoopStep


class LoopRunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class LoopStepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class LoopEventType(str, Enum):
    """Run-level loop events."""

    RUN_STARTED = "loop_run_started"
    RUN_FINISHED = "loop_run_finished"
    RUN_BLOCKED = "loop_run_blocked"
    RUN_FAILED = "loop_run_failed"


_OPEN_RUN_STATUSES = (LoopRunStatus.PENDING.value, LoopRunStatus.RUNNING.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LoopRunStore:
    """Service for loop run and step records.

    Usage:
        runs = LoopRunStore(db_session)
        run = runs.create_run(issue.id, actor="alice", request_id="req-1")
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        issue_id: str,
        actor: str,
        request_id: str,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LoopRunModel:
        """Create a pending run.

        Args:
            issue_id: Issue the run operates on
            actor: Authenticated caller
            request_id: Caller-supplied correlation id
            mode: execute or dryRun
            metadata: Arbitrary run metadata

        Returns:
            The created LoopRunModel
        """
        run = LoopRunModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            actor=actor,
            request_id=request_id,
            mode=ExecutionMode(mode).value,
            status=LoopRunStatus.PENDING.value,
            created_at=_now(),
            run_metadata=metadata or {},
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def start_run(self, run_id: str) -> bool:
        """Move a pending run to running. Returns False if it was not pending."""
        result = self.db.execute(
            update(LoopRunModel)
            .where(
                LoopRunModel.id == run_id,
                LoopRunModel.status == LoopRunStatus.PENDING.value,
            )
            .values(status=LoopRunStatus.RUNNING.value, started_at=_now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def complete_run(
        self,
        run_id: str,
        status: LoopRunStatus,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Set a terminal status on an open run.

        Runs already in a terminal status are left untouched.

        Returns:
            True if the run was updated, False if it was already terminal
        """
        values: Dict[Any, Any] = {
            LoopRunModel.status: LoopRunStatus(status).value,
            LoopRunModel.completed_at: _now(),
            LoopRunModel.duration_ms: duration_ms,
            LoopRunModel.error_message: error_message,
        }
        if metadata is not None:
            run = self.get_run(run_id)
            merged = dict(run.run_metadata or {}) if run else {}
            merged.update(metadata)
            values[LoopRunModel.run_metadata] = merged

        result = self.db.execute(
            update(LoopRunModel)
            .where(
                LoopRunModel.id == run_id,
                LoopRunModel.status.in_(_OPEN_RUN_STATUSES),
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def get_run(self, run_id: str) -> Optional[LoopRunModel]:
        return self.db.query(LoopRunModel).filter(LoopRunModel.id == run_id).first()

    def get_run_with_steps(self, run_id: str) -> Optional[LoopRunModel]:
        """Return a run with its steps loaded, ordered by step_number."""
        return (
            self.db.query(LoopRunModel)
            .options(selectinload(LoopRunModel.steps))
            .filter(LoopRunModel.id == run_id)
            .first()
        )

    def list_runs_by_issue(
        self, issue_id: str, limit: int = 20, offset: int = 0
    ) -> List[LoopRunModel]:
        """Return an issue's runs, newest first."""
        return (
            self.db.query(LoopRunModel)
            .filter(LoopRunModel.issue_id == issue_id)
            .order_by(LoopRunModel.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_runs_by_issue(self, issue_id: str) -> int:
        return (
            self.db.query(LoopRunModel)
            .filter(LoopRunModel.issue_id == issue_id)
            .count()
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def create_step(
        self,
        run_id: str,
        step_type: LoopStep,
        step_number: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LoopRunStepModel:
        """Record that a step has begun.

        ``step_number`` defaults to one past the highest number already
        recorded for the run.
        """
        if step_number is None:
            step_number = (
                self.db.query(LoopRunStepModel)
                .filter(LoopRunStepModel.run_id == run_id)
                .count()
                + 1
            )
        step = LoopRunStepModel(
            id=str(uuid.uuid4()),
            run_id=run_id,
            step_number=step_number,
            step_type=LoopStep(step_type).value,
            status=LoopStepStatus.RUNNING.value,
            started_at=_now(),
            step_metadata=metadata or {},
        )
        self.db.add(step)
        self.db.commit()
        self.db.refresh(step)
        return step

    def complete_step(
        self,
        step_id: str,
        status: LoopStepStatus,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[LoopRunStepModel]:
        step = (
            self.db.query(LoopRunStepModel)
            .filter(LoopRunStepModel.id == step_id)
            .first()
        )
        if step is None:
            return None

        step.status = LoopStepStatus(status).value
        step.completed_at = _now()
        step.duration_ms = duration_ms
        step.error_message = error_message
        if metadata:
            merged = dict(step.step_metadata or {})
            merged.update(metadata)
            step.step_metadata = merged

        self.db.commit()
        self.db.refresh(step)
        return step

    def list_steps(self, run_id: str) -> List[LoopRunStepModel]:
        return (
            self.db.query(LoopRunStepModel)
            .filter(LoopRunStepModel.run_id == run_id)
            .order_by(LoopRunStepModel.step_number.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Loop events
    # ------------------------------------------------------------------

    def record_event(
        self,
        issue_id: str,
        run_id: str,
        event_type: LoopEventType,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> LoopEventModel:
        event = LoopEventModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            run_id=run_id,
            event_type=LoopEventType(event_type).value,
            event_data=event_data or {},
            occurred_at=_now(),
        )
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def list_events(self, run_id: str) -> List[LoopEventModel]:
        return (
            self.db.query(LoopEventModel)
            .filter(LoopEventModel.run_id == run_id)
            .order_by(LoopEventModel.occurred_at.asc())
            .all()
        )
