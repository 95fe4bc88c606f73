"""
Step execution context and result types.

A step either succeeds or is blocked, never both. The two outcomes are
separate dataclasses; ``to_dict()`` renders the wire form shared by the API
and the evidence trail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .state import BlockerCode, ExecutionMode, LoopStep


class LoopError(Exception):
    """Base class for hard errors raised out of the loop."""

    code = "LOOP_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class IssueNotFoundError(LoopError):
    """Raised when a step is invoked for an issue id that does not exist."""

    code = "ISSUE_NOT_FOUND"

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue not found: {issue_id}")


class InvalidTransitionError(LoopError):
    """Raised when code asks for a transition the state machine forbids."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state} -> {to_state}")


@dataclass
class StepContext:
    """Input to a step executor."""

    issue_id: str
    run_id: str
    request_id: str
    actor: str
    mode: ExecutionMode = ExecutionMode.EXECUTE

    # Step-specific inputs (e.g. remediation reason for S9)
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.mode == ExecutionMode.DRY_RUN


@dataclass
class StepSuccess:
    """The step passed its gate (and, in execute mode, applied its effects)."""

    step: LoopStep
    state_before: str
    state_after: str
    message: str
    fields_changed: List[str] = field(default_factory=list)
    duration_ms: Optional[int] = None

    # Step-specific fields recorded in the evidence event
    details: Dict[str, Any] = field(default_factory=dict)

    success = True
    blocked = False
    blocker_code = None
    blocker_message = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "blocked": False,
            "blockerCode": None,
            "blockerMessage": None,
            "stateBefore": self.state_before,
            "stateAfter": self.state_after,
            "fieldsChanged": list(self.fields_changed),
            "message": self.message,
            "durationMs": self.duration_ms,
        }


@dataclass
class StepBlocked:
    """The step refused to proceed. Nothing was mutated."""

    step: LoopStep
    state_before: str
    code: BlockerCode
    message: str
    duration_ms: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    success = False
    blocked = True

    @property
    def state_after(self) -> str:
        return self.state_before

    @property
    def fields_changed(self) -> List[str]:
        return []

    @property
    def blocker_code(self) -> BlockerCode:
        return self.code

    @property
    def blocker_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "blocked": True,
            "blockerCode": self.code.value,
            "blockerMessage": self.message,
            "stateBefore": self.state_before,
            "stateAfter": self.state_before,
            "fieldsChanged": [],
            "message": self.message,
            "durationMs": self.duration_ms,
        }


StepResult = Union[StepSuccess, StepBlocked]
