"""
AFU-9 Control Center

Issue lifecycle state machine with S1-S9 step executors, a loop run store,
an evidence timeline and a GitHub publish pipeline.
"""

import importlib.metadata

__version__ = importlib.metadata.version("afu9-control-center")

from .loop import (
    BlockerCode,
    ExecutionMode,
    IssueState,
    LoopOrchestrator,
    LoopStep,
    StepBlocked,
    StepSuccess,
    resolve_next_step,
)
from .publish import PublishOrchestrator, PublishResult

__all__ = [
    "BlockerCode",
    "ExecutionMode",
    "IssueState",
    "LoopOrchestrator",
    "LoopStep",
    "PublishOrchestrator",
    "PublishResult",
    "StepBlocked",
    "StepSuccess",
    "resolve_next_step",
]
