"""
Issue Timeline Service.

Append-only recorder for lifecycle events. Every step executor invocation,
blocked or successful, dry run or execute, writes exactly one event here.
The publish orchestrator records its phases here as well.

Events are never updated or deleted; this service exposes no way to do so.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db.loop_models import TimelineEventModel
from ..db.models import IssueEvidenceModel


class TimelineEventType(str, Enum):
    """Timeline event types."""

    # Step executors
    ISSUE_PICKED = "ISSUE_PICKED"
    SPEC_READY = "SPEC_READY"
    IMPLEMENT_PREP = "IMPLEMENT_PREP"
    REVIEW_REQUESTED = "REVIEW_REQUESTED"
    MERGED = "MERGED"
    DEPLOYMENT_OBSERVED = "DEPLOYMENT_OBSERVED"
    VERIFIED = "VERIFIED"
    ISSUE_CLOSED = "ISSUE_CLOSED"
    REMEDIATION_RECORDED = "REMEDIATION_RECORDED"
    STEP_BLOCKED = "STEP_BLOCKED"

    # Publish orchestrator
    PUBLISHING_STARTED = "PUBLISHING_STARTED"
    PUBLISHED = "PUBLISHED"
    GITHUB_MIRRORED = "GITHUB_MIRRORED"
    CP_ASSIGNED = "CP_ASSIGNED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    ERROR_OCCURRED = "ERROR_OCCURRED"

    # Verification
    VERDICT_SET = "VERDICT_SET"


class TimelineService:
    """Service for appending and reading issue timeline events.

    Usage:
        timeline = TimelineService(db_session)
        timeline.record(issue.id, TimelineEventType.SPEC_READY, {...}, actor="alice")
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        issue_id: str,
        event_type: TimelineEventType,
        event_data: Dict[str, Any],
        actor: str,
        actor_type: str = "user",
        run_id: Optional[str] = None,
        step: Optional[str] = None,
    ) -> TimelineEventModel:
        """Append an event to an issue's timeline.

        Args:
            issue_id: Issue the event belongs to
            event_type: Kind of event
            event_data: Structured payload (stateBefore, stateAfter, ...)
            actor: Who triggered the event
            actor_type: "user" or "system"
            run_id: Loop run the event belongs to, if any
            step: Loop step that produced the event, if any

        Returns:
            The created TimelineEventModel
        """
        event = TimelineEventModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            event_type=TimelineEventType(event_type).value,
            event_data=event_data,
            actor=actor,
            actor_type=actor_type,
            run_id=run_id or event_data.get("runId"),
            step=step or event_data.get("step"),
            created_at=datetime.now(timezone.utc),
        )

        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def list_for_issue(
        self,
        issue_id: str,
        event_type: Optional[TimelineEventType] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[TimelineEventModel]:
        """Return an issue's events in chronological order.

        Args:
            issue_id: Issue to read
            event_type: Optional filter on event type
            limit: Maximum number of events to return
            offset: Number of events to skip

        Returns:
            List of TimelineEventModel, oldest first
        """
        query = self.db.query(TimelineEventModel).filter(
            TimelineEventModel.issue_id == issue_id
        )
        if event_type is not None:
            query = query.filter(
                TimelineEventModel.event_type == TimelineEventType(event_type).value
            )
        return (
            query.order_by(TimelineEventModel.created_at.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_for_run(self, run_id: str) -> List[TimelineEventModel]:
        """Return every event written during a loop run."""
        return (
            self.db.query(TimelineEventModel)
            .filter(TimelineEventModel.run_id == run_id)
            .order_by(TimelineEventModel.created_at.asc())
            .all()
        )

    def count_for_issue(self, issue_id: str) -> int:
        return (
            self.db.query(TimelineEventModel)
            .filter(TimelineEventModel.issue_id == issue_id)
            .count()
        )


class EvidenceType(str, Enum):
    """Receipt types recorded alongside the timeline."""

    PUBLISH_RECEIPT = "PUBLISH_RECEIPT"
    GITHUB_MIRROR_RECEIPT = "GITHUB_MIRROR_RECEIPT"


class EvidenceService:
    """Append-only receipts attached to an issue."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        issue_id: str,
        evidence_type: EvidenceType,
        evidence_data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> IssueEvidenceModel:
        record = IssueEvidenceModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            evidence_type=EvidenceType(evidence_type).value,
            evidence_data=evidence_data,
            request_id=request_id,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def list_for_issue(self, issue_id: str) -> List[IssueEvidenceModel]:
        return (
            self.db.query(IssueEvidenceModel)
            .filter(IssueEvidenceModel.issue_id == issue_id)
            .order_by(IssueEvidenceModel.created_at.asc())
            .all()
        )
