"""
SQLAlchemy models for the AFU-9 issue domain.

Issues, drafts, verification verdicts and the terminal-transition records
(closures, remediations) live here. Loop runs, steps and the timeline live in
``loop_models``.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value) -> Any:
    return value.isoformat() if value else None


class IssueModel(Base):
    """An AFU-9 issue tracked through the S1-S9 lifecycle.

    ``status`` is deliberately a plain string column: the step executors
    refuse to act on values outside the known state set instead of the
    database rejecting them on read.
    """

    __tablename__ = "afu9_issues"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=True)
    labels = Column(JSON, nullable=False, default=list)

    status = Column(String(32), nullable=False, default="CREATED", index=True)
    handoff_state = Column(String(16), nullable=False, default="UNSYNCED")

    # External tracker mirror
    github_url = Column(String(500), nullable=True)
    github_issue_number = Column(Integer, nullable=True)
    github_repo = Column(String(255), nullable=True)
    github_synced_at = Column(DateTime(timezone=True), nullable=True)

    assignee = Column(String(128), nullable=True)

    # Associated artifacts
    source_session_id = Column(String(64), nullable=True, index=True)
    current_draft_id = Column(String(36), nullable=True)
    active_cr_id = Column(String(64), nullable=True)
    pr_url = Column(String(500), nullable=True)
    merge_sha = Column(String(64), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    @property
    def public_id(self) -> str:
        """Short identifier shown in GitHub titles and the UI."""
        return str(self.id)[:8]

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "public_id": self.public_id,
            "title": self.title,
            "body": self.body,
            "labels": self.labels or [],
            "status": self.status,
            "handoff_state": self.handoff_state,
            "github_url": self.github_url,
            "github_issue_number": self.github_issue_number,
            "github_repo": self.github_repo,
            "github_synced_at": _iso(self.github_synced_at),
            "assignee": self.assignee,
            "source_session_id": self.source_session_id,
            "current_draft_id": self.current_draft_id,
            "active_cr_id": self.active_cr_id,
            "pr_url": self.pr_url,
            "merge_sha": self.merge_sha,
            "last_error": self.last_error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class IssueDraftModel(Base):
    """Specification draft owned by a drafting session (read-only here)."""

    __tablename__ = "intent_issue_drafts"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(64), nullable=False, unique=True, index=True)
    issue_json = Column(JSON, nullable=False, default=dict)
    issue_hash = Column(String(64), nullable=True)
    last_validation_status = Column(String(16), nullable=False, default="unknown")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "issue_json": self.issue_json,
            "issue_hash": self.issue_hash,
            "last_validation_status": self.last_validation_status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class IssueDraftVersionModel(Base):
    """Committed, immutable snapshot of a draft."""

    __tablename__ = "intent_issue_draft_versions"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(64), nullable=False, index=True)
    draft_id = Column(String(36), ForeignKey("intent_issue_drafts.id"), nullable=True)
    version_number = Column(Integer, nullable=False, default=1)
    issue_hash = Column(String(64), nullable=True)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("session_id", "version_number", name="uq_draft_version"),
    )


class VerificationVerdictModel(Base):
    """GREEN/RED outcome of post-merge verification for an issue."""

    __tablename__ = "verification_verdicts"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), ForeignKey("afu9_issues.id"), nullable=False)
    run_id = Column(String(36), nullable=True)
    verdict = Column(String(8), nullable=False)
    rationale = Column(Text, nullable=True)
    failed_checks = Column(JSON, nullable=False, default=list)
    evaluation_rules = Column(JSON, nullable=False, default=list)
    evidence = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_verification_verdicts_issue_created", "issue_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "verdict": self.verdict,
            "rationale": self.rationale,
            "failed_checks": self.failed_checks or [],
            "evaluation_rules": self.evaluation_rules or [],
            "evidence": self.evidence,
            "created_at": _iso(self.created_at),
        }


class IssueClosureModel(Base):
    """Evidence for the GREEN-path close. At most one per issue."""

    __tablename__ = "issue_closures"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(
        String(36), ForeignKey("afu9_issues.id"), nullable=False, unique=True
    )
    run_id = Column(String(36), nullable=True)
    verification_verdict_id = Column(
        String(36), ForeignKey("verification_verdicts.id"), nullable=False
    )
    closure_reason = Column(String(64), nullable=False, default="GREEN_VERDICT")
    closed_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "verification_verdict_id": self.verification_verdict_id,
            "closure_reason": self.closure_reason,
            "closed_at": _iso(self.closed_at),
        }


class RemediationRecordModel(Base):
    """Evidence for a RED-path HOLD. One row per remediation attempt."""

    __tablename__ = "remediation_records"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), ForeignKey("afu9_issues.id"), nullable=False)
    run_id = Column(String(36), nullable=True)
    remediation_reason = Column(Text, nullable=False)
    failed_step = Column(String(32), nullable=True)
    blocker_code = Column(String(64), nullable=True)
    red_verdict = Column(JSON, nullable=True)
    failed_checks = Column(JSON, nullable=False, default=list)
    remediation_status = Column(String(16), nullable=False, default="pending")
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_remediation_records_issue_created", "issue_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "remediation_reason": self.remediation_reason,
            "failed_step": self.failed_step,
            "blocker_code": self.blocker_code,
            "red_verdict": self.red_verdict,
            "failed_checks": self.failed_checks or [],
            "remediation_status": self.remediation_status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


class ControlPackAssignmentModel(Base):
    """Control pack bound to an issue at publish time."""

    __tablename__ = "control_pack_assignments"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), ForeignKey("afu9_issues.id"), nullable=False)
    control_pack_id = Column(String(64), nullable=False)
    control_pack_name = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False, default="active")
    assigned_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("issue_id", "control_pack_id", name="uq_issue_control_pack"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "control_pack_id": self.control_pack_id,
            "control_pack_name": self.control_pack_name,
            "status": self.status,
            "assigned_by": self.assigned_by,
            "created_at": _iso(self.created_at),
        }


class IssueEvidenceModel(Base):
    """Append-only receipt (publish, GitHub mirror) attached to an issue."""

    __tablename__ = "issue_evidence"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), ForeignKey("afu9_issues.id"), nullable=False)
    evidence_type = Column(String(64), nullable=False, index=True)
    evidence_data = Column(JSON, nullable=False, default=dict)
    request_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "evidence_type": self.evidence_type,
            "evidence_data": self.evidence_data,
            "request_id": self.request_id,
            "created_at": _iso(self.created_at),
        }


class WorkflowMergeModel(Base):
    """Workflow-mesh record of a merged PR."""

    __tablename__ = "workflow_merges"

    id = Column(String(36), primary_key=True, default=_uuid)
    issue_id = Column(String(36), ForeignKey("afu9_issues.id"), nullable=False)
    run_id = Column(String(36), nullable=True)
    pr_url = Column(String(500), nullable=False)
    merge_sha = Column(String(64), nullable=True)
    merge_method = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("issue_id", "merge_sha", name="uq_workflow_merge"),
    )
