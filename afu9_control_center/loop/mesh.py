"""
Workflow mesh: the downstream record of merged pull requests.

S5 applies a mesh update after every merge, including merges it finds already
done on GitHub. The update must therefore be idempotent per (issue, sha).
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import WorkflowMergeModel


@dataclass
class MergeUpdate:
    issue_id: str
    run_id: str
    request_id: str
    pr_url: str
    merge_sha: Optional[str]
    merge_method: str


@dataclass
class MeshUpdateResult:
    ok: bool
    message: str
    record_id: Optional[str] = None
    already_recorded: bool = False


class WorkflowMesh(ABC):
    """Receives post-merge workflow updates."""

    @abstractmethod
    def apply_merge(self, update: MergeUpdate) -> MeshUpdateResult:
        """Record a merge. Must not raise for expected failures."""
        pass


class DatabaseWorkflowMesh(WorkflowMesh):
    """Mesh backed by the ``workflow_merges`` table."""

    def __init__(self, db: Session):
        self.db = db

    def apply_merge(self, update: MergeUpdate) -> MeshUpdateResult:
        existing = (
            self.db.query(WorkflowMergeModel)
            .filter(
                WorkflowMergeModel.issue_id == update.issue_id,
                WorkflowMergeModel.merge_sha == update.merge_sha,
            )
            .first()
        )
        if existing is not None:
            return MeshUpdateResult(
                ok=True,
                message="Merge already recorded",
                record_id=existing.id,
                already_recorded=True,
            )

        record = WorkflowMergeModel(
            id=str(uuid.uuid4()),
            issue_id=update.issue_id,
            run_id=update.run_id,
            pr_url=update.pr_url,
            merge_sha=update.merge_sha,
            merge_method=update.merge_method,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return MeshUpdateResult(
                ok=True, message="Merge already recorded", already_recorded=True
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            return MeshUpdateResult(ok=False, message=f"Workflow mesh update failed: {e}")

        return MeshUpdateResult(ok=True, message="Merge recorded", record_id=record.id)
