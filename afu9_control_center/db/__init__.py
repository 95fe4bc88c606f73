"""
Database package for AFU-9 Control Center.
"""

from .base import Base, get_db, get_engine, get_session_local
from .loop_models import LoopEventModel, LoopRunModel, LoopRunStepModel, TimelineEventModel
from .models import (
    ControlPackAssignmentModel,
    IssueClosureModel,
    IssueDraftModel,
    IssueDraftVersionModel,
    IssueEvidenceModel,
    IssueModel,
    RemediationRecordModel,
    VerificationVerdictModel,
    WorkflowMergeModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "ControlPackAssignmentModel",
    "IssueClosureModel",
    "IssueDraftModel",
    "IssueDraftVersionModel",
    "IssueEvidenceModel",
    "IssueModel",
    "LoopEventModel",
    "LoopRunModel",
    "LoopRunStepModel",
    "RemediationRecordModel",
    "TimelineEventModel",
    "VerificationVerdictModel",
    "WorkflowMergeModel",
]
