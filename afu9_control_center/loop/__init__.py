"""
Issue lifecycle loop: state machine, S1-S9 step executors and stores.
"""

from .event_store import EvidenceService, EvidenceType, TimelineEventType, TimelineService
from .issue_store import IssueRepository, StaleIssueStateError
from .mesh import DatabaseWorkflowMesh, MergeUpdate, MeshUpdateResult, WorkflowMesh
from .orchestrator import LoopOrchestrator, LoopRunOutcome
from .results import (
    InvalidTransitionError,
    IssueNotFoundError,
    LoopError,
    StepBlocked,
    StepContext,
    StepResult,
    StepSuccess,
)
from .run_store import LoopEventType, LoopRunStatus, LoopRunStore, LoopStepStatus
from .state import (
    BlockerCode,
    ExecutionMode,
    IssueState,
    LoopStep,
    StepResolution,
    blocker_code_for_gate_reason,
    get_blocker_description,
    is_valid_transition,
    resolve_next_step,
)

__all__ = [
    "BlockerCode",
    "DatabaseWorkflowMesh",
    "EvidenceService",
    "EvidenceType",
    "ExecutionMode",
    "InvalidTransitionError",
    "IssueNotFoundError",
    "IssueRepository",
    "IssueState",
    "LoopError",
    "LoopEventType",
    "LoopOrchestrator",
    "LoopRunOutcome",
    "LoopRunStatus",
    "LoopRunStore",
    "LoopStep",
    "LoopStepStatus",
    "MergeUpdate",
    "MeshUpdateResult",
    "StaleIssueStateError",
    "StepBlocked",
    "StepContext",
    "StepResolution",
    "StepResult",
    "StepSuccess",
    "TimelineEventType",
    "TimelineService",
    "WorkflowMesh",
    "blocker_code_for_gate_reason",
    "get_blocker_description",
    "is_valid_transition",
    "resolve_next_step",
]
