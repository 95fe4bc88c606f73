"""
Loop run, step and timeline models.

The timeline is the audit trail of the issue lifecycle: every step executor
invocation appends exactly one row, and rows are never updated or deleted.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value) -> Any:
    return value.isoformat() if value else None


class LoopRunModel(Base):
    """One invocation of the loop for an issue."""

    __tablename__ = "loop_runs"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), nullable=False, index=True)
    actor = Column(String(128), nullable=False)
    request_id = Column(String(64), nullable=False, index=True)
    mode = Column(String(16), nullable=False, default="execute")
    status = Column(String(16), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    run_metadata = Column("metadata", JSON, nullable=False, default=dict)

    steps = relationship(
        "LoopRunStepModel",
        back_populates="run",
        order_by="LoopRunStepModel.step_number",
    )

    __table_args__ = (Index("ix_loop_runs_issue_created", "issue_id", "created_at"),)

    def to_dict(self, include_steps: bool = False) -> Dict[str, Any]:
        """Convert model to dictionary."""
        data = {
            "id": self.id,
            "issue_id": self.issue_id,
            "actor": self.actor,
            "request_id": self.request_id,
            "mode": self.mode,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "metadata": self.run_metadata or {},
        }
        if include_steps:
            data["steps"] = [step.to_dict() for step in self.steps]
        return data


class LoopRunStepModel(Base):
    """One step attempted within a run."""

    __tablename__ = "loop_run_steps"

    id = Column(String(36), primary_key=True, default=_uuid)
    run_id = Column(String(36), ForeignKey("loop_runs.id"), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)
    step_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    step_metadata = Column("metadata", JSON, nullable=False, default=dict)

    run = relationship("LoopRunModel", back_populates="steps")

    __table_args__ = (
        Index("ix_loop_run_steps_run_number", "run_id", "step_number", unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_number": self.step_number,
            "step_type": self.step_type,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "metadata": self.step_metadata or {},
        }


class TimelineEventModel(Base):
    """Append-only lifecycle event for an issue."""

    __tablename__ = "issue_timeline"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    event_data = Column(JSON, nullable=False, default=dict)
    actor = Column(String(128), nullable=False)
    actor_type = Column(String(16), nullable=False, default="user")
    # Denormalized from event_data for run/step lookups
    run_id = Column(String(36), nullable=True, index=True)
    step = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_issue_timeline_issue_created", "issue_id", "created_at"),
        Index("ix_issue_timeline_run_step", "run_id", "step"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "actor": self.actor,
            "actor_type": self.actor_type,
            "run_id": self.run_id,
            "step": self.step,
            "created_at": _iso(self.created_at),
        }


class LoopEventModel(Base):
    """Run-level loop event (started, finished, blocked, failed)."""

    __tablename__ = "loop_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), nullable=False, index=True)
    run_id = Column(String(36), ForeignKey("loop_runs.id"), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "occurred_at": _iso(self.occurred_at),
        }
