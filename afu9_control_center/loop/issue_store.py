"""
Issue repository for the step executors.

All lifecycle status writes go through ``transition``, a single conditional
UPDATE keyed on the expected current status. A caller that loses a race sees
``False`` and must not assume its transition happened.

``close_issue`` and ``record_remediation`` pair their evidence row with the
status change in one transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import (
    IssueClosureModel,
    IssueDraftModel,
    IssueDraftVersionModel,
    IssueModel,
    RemediationRecordModel,
    VerificationVerdictModel,
)
from .results import InvalidTransitionError, IssueNotFoundError, LoopError
from .state import IssueState, is_valid_transition

# Columns a transition may set alongside ``status``
_TRANSITION_FIELDS = frozenset({"merge_sha", "last_error", "assignee", "handoff_state"})

# Columns the GitHub mirror may update; never includes ``status``
_MIRROR_FIELDS = frozenset(
    {
        "github_issue_number",
        "github_url",
        "github_repo",
        "github_synced_at",
        "handoff_state",
        "last_error",
    }
)


class StaleIssueStateError(LoopError):
    """The issue left the expected state between read and write."""

    code = "STALE_ISSUE_STATE"

    def __init__(self, issue_id: str, expected: str):
        self.issue_id = issue_id
        self.expected = expected
        super().__init__(f"Issue {issue_id} is no longer in state {expected}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class IssueRepository:
    """Reads and guarded writes on AFU-9 issues and their related records."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def get(self, issue_id: str) -> Optional[IssueModel]:
        return self.db.query(IssueModel).filter(IssueModel.id == issue_id).first()

    def require(self, issue_id: str) -> IssueModel:
        """Return the issue or raise IssueNotFoundError."""
        issue = self.get(issue_id)
        if issue is None:
            raise IssueNotFoundError(issue_id)
        return issue

    def _status_update(self, issue_id: str, expected: IssueState, values: Dict[Any, Any]):
        return self.db.execute(
            update(IssueModel)
            .where(IssueModel.id == issue_id, IssueModel.status == expected.value)
            .values(values)
            .execution_options(synchronize_session=False)
        )

    def transition(
        self,
        issue_id: str,
        expected: IssueState,
        new_state: IssueState,
        **fields: Any,
    ) -> bool:
        """Atomically move an issue from ``expected`` to ``new_state``.

        Args:
            issue_id: Issue to update
            expected: Status the caller validated against
            new_state: Target status
            **fields: Extra columns to set in the same UPDATE (merge_sha, ...)

        Returns:
            True if the row was updated, False if the status had changed

        Raises:
            InvalidTransitionError: if the state machine forbids the move
        """
        if not is_valid_transition(expected, new_state):
            raise InvalidTransitionError(expected.value, new_state.value)
        unknown = set(fields) - _TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be set by a transition: {sorted(unknown)}")

        values: Dict[Any, Any] = {
            IssueModel.status: new_state.value,
            IssueModel.updated_at: _now(),
        }
        for name, value in fields.items():
            values[getattr(IssueModel, name)] = value

        result = self._status_update(issue_id, expected, values)
        self.db.commit()
        return result.rowcount == 1

    def assign_if_unassigned(self, issue_id: str, assignee: str) -> bool:
        """Set the assignee unless someone already holds the issue."""
        result = self.db.execute(
            update(IssueModel)
            .where(
                IssueModel.id == issue_id,
                or_(IssueModel.assignee.is_(None), IssueModel.assignee == ""),
            )
            .values({IssueModel.assignee: assignee, IssueModel.updated_at: _now()})
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def update_mirror(self, issue_id: str, **fields: Any) -> None:
        """Update GitHub mirror columns. Cannot touch the lifecycle status."""
        unknown = set(fields) - _MIRROR_FIELDS
        if unknown:
            raise ValueError(f"Not a mirror field: {sorted(unknown)}")

        values: Dict[Any, Any] = {IssueModel.updated_at: _now()}
        for name, value in fields.items():
            values[getattr(IssueModel, name)] = value

        self.db.execute(
            update(IssueModel)
            .where(IssueModel.id == issue_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def get_draft(self, session_id: str) -> Optional[IssueDraftModel]:
        return (
            self.db.query(IssueDraftModel)
            .filter(IssueDraftModel.session_id == session_id)
            .first()
        )

    def get_draft_for_issue(self, issue: IssueModel) -> Optional[IssueDraftModel]:
        if issue.source_session_id:
            return self.get_draft(issue.source_session_id)
        if issue.current_draft_id:
            return (
                self.db.query(IssueDraftModel)
                .filter(IssueDraftModel.id == issue.current_draft_id)
                .first()
            )
        return None

    def count_draft_versions(self, session_id: str) -> int:
        return (
            self.db.query(IssueDraftVersionModel)
            .filter(IssueDraftVersionModel.session_id == session_id)
            .count()
        )

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def latest_verdict(self, issue_id: str) -> Optional[VerificationVerdictModel]:
        return (
            self.db.query(VerificationVerdictModel)
            .filter(VerificationVerdictModel.issue_id == issue_id)
            .order_by(VerificationVerdictModel.created_at.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Closures
    # ------------------------------------------------------------------

    def get_closure(self, issue_id: str) -> Optional[IssueClosureModel]:
        return (
            self.db.query(IssueClosureModel)
            .filter(IssueClosureModel.issue_id == issue_id)
            .first()
        )

    def close_issue(
        self,
        issue_id: str,
        run_id: Optional[str],
        verdict_id: str,
        reason: str = "GREEN_VERDICT",
    ) -> Optional[str]:
        """Create the closure record and move VERIFIED -> CLOSED together.

        Returns:
            The new closure id, or None if a closure already exists for the
            issue (the caller should fetch and return the existing one)

        Raises:
            StaleIssueStateError: if the issue is no longer VERIFIED
        """
        if self.get_closure(issue_id) is not None:
            return None

        closure = IssueClosureModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            run_id=run_id,
            verification_verdict_id=verdict_id,
            closure_reason=reason,
            closed_at=_now(),
        )
        try:
            self.db.add(closure)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return None

        result = self._status_update(
            issue_id,
            IssueState.VERIFIED,
            {IssueModel.status: IssueState.CLOSED.value, IssueModel.updated_at: _now()},
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise StaleIssueStateError(issue_id, IssueState.VERIFIED.value)

        self.db.commit()
        return closure.id

    # ------------------------------------------------------------------
    # Remediation
    # ------------------------------------------------------------------

    def record_remediation(
        self,
        issue_id: str,
        expected: IssueState,
        reason: str,
        run_id: Optional[str] = None,
        failed_step: Optional[str] = None,
        blocker_code: Optional[str] = None,
        red_verdict: Optional[Dict[str, Any]] = None,
        failed_checks: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> str:
        """Insert a remediation record and place the issue on HOLD.

        An issue already on HOLD only gains the additional record.

        Returns:
            The remediation record id

        Raises:
            StaleIssueStateError: if the issue is no longer in ``expected``
        """
        record = RemediationRecordModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            run_id=run_id,
            remediation_reason=reason,
            failed_step=failed_step,
            blocker_code=blocker_code,
            red_verdict=red_verdict,
            failed_checks=list(failed_checks or []),
            remediation_status="pending",
            created_by=created_by,
            created_at=_now(),
        )
        self.db.add(record)
        self.db.flush()

        if expected != IssueState.HOLD:
            if not is_valid_transition(expected, IssueState.HOLD):
                self.db.rollback()
                raise InvalidTransitionError(expected.value, IssueState.HOLD.value)
            result = self._status_update(
                issue_id,
                expected,
                {IssueModel.status: IssueState.HOLD.value, IssueModel.updated_at: _now()},
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise StaleIssueStateError(issue_id, expected.value)

        self.db.commit()
        return record.id

    def list_remediations(self, issue_id: str) -> List[RemediationRecordModel]:
        return (
            self.db.query(RemediationRecordModel)
            .filter(RemediationRecordModel.issue_id == issue_id)
            .order_by(RemediationRecordModel.created_at.asc())
            .all()
        )
