"""
Issue lifecycle state machine vocabulary.

Defines the closed sets the whole loop agrees on:

- IssueState: the lifecycle ``status`` values of an AFU-9 issue
- LoopStep: the nine step executors S1-S9
- BlockerCode: stable reasons a step refused to proceed
- the legal transition table and the pure next-step resolver

Canonical path::

    CREATED -> SPEC_READY -> IMPLEMENTING_PREP -> REVIEW_READY -> DONE -> VERIFIED -> CLOSED

Any non-terminal state may move to HOLD through S9. CLOSED and KILLED are
terminal and immutable; HOLD is terminal for automated flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class IssueState(str, Enum):
    """Lifecycle status of an AFU-9 issue."""

    CREATED = "CREATED"
    DRAFT_READY = "DRAFT_READY"
    VERSION_COMMITTED = "VERSION_COMMITTED"
    CR_BOUND = "CR_BOUND"
    SPEC_READY = "SPEC_READY"
    PUBLISHING = "PUBLISHING"
    PUBLISHED = "PUBLISHED"
    IMPLEMENTING = "IMPLEMENTING"
    IMPLEMENTING_PREP = "IMPLEMENTING_PREP"
    REVIEW_READY = "REVIEW_READY"
    MERGE_READY = "MERGE_READY"
    DONE = "DONE"
    VERIFIED = "VERIFIED"
    HOLD = "HOLD"
    CLOSED = "CLOSED"
    KILLED = "KILLED"


class LoopStep(str, Enum):
    """The nine lifecycle step executors."""

    S1_PICK_ISSUE = "S1_PICK_ISSUE"
    S2_SPEC_READY = "S2_SPEC_READY"
    S3_IMPLEMENT_PREP = "S3_IMPLEMENT_PREP"
    S4_REVIEW = "S4_REVIEW"
    S5_MERGE = "S5_MERGE"
    S6_DEPLOYMENT_OBSERVE = "S6_DEPLOYMENT_OBSERVE"
    S7_VERIFY_GATE = "S7_VERIFY_GATE"
    S8_CLOSE = "S8_CLOSE"
    S9_REMEDIATE = "S9_REMEDIATE"


class BlockerCode(str, Enum):
    """Stable reasons a step executor refused to proceed.

    Executors only ever report values from this enum. New reasons are added
    here, never invented at the call site.
    """

    # Linking and spec gate
    NO_GITHUB_LINK = "NO_GITHUB_LINK"
    NO_DRAFT = "NO_DRAFT"
    NO_COMMITTED_DRAFT = "NO_COMMITTED_DRAFT"
    DRAFT_INVALID = "DRAFT_INVALID"

    # State machine
    LOCKED = "LOCKED"
    UNKNOWN_STATE = "UNKNOWN_STATE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"

    # Gate decision
    NO_REVIEW_APPROVAL = "NO_REVIEW_APPROVAL"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    CHECKS_PENDING = "CHECKS_PENDING"
    CHECKS_FAILED = "CHECKS_FAILED"
    NO_CHECKS_FOUND = "NO_CHECKS_FOUND"
    SNAPSHOT_NOT_FOUND = "SNAPSHOT_NOT_FOUND"
    SNAPSHOT_FETCH_FAILED = "SNAPSHOT_FETCH_FAILED"
    PR_FETCH_FAILED = "PR_FETCH_FAILED"
    GATE_DECISION_FAILED = "GATE_DECISION_FAILED"

    # Merge
    NO_PR_LINKED = "NO_PR_LINKED"
    PR_NOT_FOUND = "PR_NOT_FOUND"
    PR_CLOSED = "PR_CLOSED"
    MERGE_CONFLICT = "MERGE_CONFLICT"
    MERGE_FAILED = "MERGE_FAILED"
    MESH_UPDATE_FAILED = "MESH_UPDATE_FAILED"

    # Deployment observation
    PR_NOT_MERGED = "PR_NOT_MERGED"
    GITHUB_API_ERROR = "GITHUB_API_ERROR"

    # Verify, close, remediate
    NOT_VERIFIED = "NOT_VERIFIED"
    NO_GREEN_VERDICT = "NO_GREEN_VERDICT"
    NO_REMEDIATION_REASON = "NO_REMEDIATION_REASON"
    INVALID_STATE_FOR_HOLD = "INVALID_STATE_FOR_HOLD"


class ExecutionMode(str, Enum):
    """How a step executor treats side effects."""

    EXECUTE = "execute"
    DRY_RUN = "dryRun"


TERMINAL_STATES: FrozenSet[IssueState] = frozenset(
    {IssueState.CLOSED, IssueState.KILLED}
)

# States from which S2 may promote an issue to SPEC_READY
PRE_SPEC_STATES: FrozenSet[IssueState] = frozenset(
    {
        IssueState.CREATED,
        IssueState.DRAFT_READY,
        IssueState.VERSION_COMMITTED,
        IssueState.CR_BOUND,
    }
)

# States from which S9 may place an issue on HOLD (HOLD itself re-remediates)
REMEDIABLE_STATES: FrozenSet[IssueState] = frozenset(
    set(IssueState) - TERMINAL_STATES
)

_TRANSITIONS: Dict[IssueState, FrozenSet[IssueState]] = {
    IssueState.CREATED: frozenset({IssueState.SPEC_READY, IssueState.HOLD}),
    IssueState.DRAFT_READY: frozenset({IssueState.SPEC_READY, IssueState.HOLD}),
    IssueState.VERSION_COMMITTED: frozenset({IssueState.SPEC_READY, IssueState.HOLD}),
    IssueState.CR_BOUND: frozenset({IssueState.SPEC_READY, IssueState.HOLD}),
    IssueState.SPEC_READY: frozenset({IssueState.IMPLEMENTING_PREP, IssueState.HOLD}),
    IssueState.PUBLISHING: frozenset({IssueState.HOLD}),
    IssueState.PUBLISHED: frozenset({IssueState.HOLD}),
    IssueState.IMPLEMENTING: frozenset({IssueState.HOLD}),
    IssueState.IMPLEMENTING_PREP: frozenset({IssueState.REVIEW_READY, IssueState.HOLD}),
    IssueState.REVIEW_READY: frozenset({IssueState.DONE, IssueState.HOLD}),
    IssueState.MERGE_READY: frozenset({IssueState.DONE, IssueState.HOLD}),
    IssueState.DONE: frozenset({IssueState.VERIFIED, IssueState.HOLD}),
    IssueState.VERIFIED: frozenset({IssueState.CLOSED, IssueState.HOLD}),
    IssueState.HOLD: frozenset(),
    IssueState.CLOSED: frozenset(),
    IssueState.KILLED: frozenset(),
}

_BLOCKER_DESCRIPTIONS: Dict[BlockerCode, str] = {
    BlockerCode.NO_GITHUB_LINK: "Issue must be linked to a GitHub issue before proceeding",
    BlockerCode.NO_DRAFT: "A specification draft must be created before proceeding",
    BlockerCode.NO_COMMITTED_DRAFT: "Draft must be committed and versioned before proceeding",
    BlockerCode.DRAFT_INVALID: "Draft validation failed, must be corrected before proceeding",
    BlockerCode.LOCKED: "Issue is locked by another process",
    BlockerCode.UNKNOWN_STATE: "Issue is in an unknown or invalid state",
    BlockerCode.INVARIANT_VIOLATION: "State machine invariant violated",
    BlockerCode.NO_REVIEW_APPROVAL: "Pull request has no approving review",
    BlockerCode.CHANGES_REQUESTED: "A reviewer requested changes on the pull request",
    BlockerCode.CHECKS_PENDING: "Pull request checks are still running",
    BlockerCode.CHECKS_FAILED: "Pull request checks failed",
    BlockerCode.NO_CHECKS_FOUND: "No checks were found for the pull request",
    BlockerCode.SNAPSHOT_NOT_FOUND: "No checks snapshot exists for the pull request",
    BlockerCode.SNAPSHOT_FETCH_FAILED: "Checks snapshot could not be captured",
    BlockerCode.PR_FETCH_FAILED: "Pull request could not be fetched",
    BlockerCode.GATE_DECISION_FAILED: "Merge gate did not pass",
    BlockerCode.NO_PR_LINKED: "Issue has no pull request linked",
    BlockerCode.PR_NOT_FOUND: "Linked pull request was not found",
    BlockerCode.PR_CLOSED: "Pull request was closed without merge",
    BlockerCode.MERGE_CONFLICT: "Pull request has merge conflicts",
    BlockerCode.MERGE_FAILED: "Pull request merge failed",
    BlockerCode.MESH_UPDATE_FAILED: "Merge succeeded but the workflow update failed",
    BlockerCode.PR_NOT_MERGED: "Pull request is not merged yet",
    BlockerCode.GITHUB_API_ERROR: "GitHub API request failed",
    BlockerCode.NOT_VERIFIED: "Issue has no GREEN verification verdict",
    BlockerCode.NO_GREEN_VERDICT: "Closing requires a GREEN verification verdict",
    BlockerCode.NO_REMEDIATION_REASON: "Remediation requires a reason",
    BlockerCode.INVALID_STATE_FOR_HOLD: "Issue cannot be placed on HOLD from its current state",
}

# Gate decision reasons as reported by evaluate_gate(); anything else is
# reported as GATE_DECISION_FAILED.
_GATE_REASON_CODES: Dict[str, BlockerCode] = {
    "NO_REVIEW_APPROVAL": BlockerCode.NO_REVIEW_APPROVAL,
    "CHANGES_REQUESTED": BlockerCode.CHANGES_REQUESTED,
    "CHECKS_PENDING": BlockerCode.CHECKS_PENDING,
    "CHECKS_FAILED": BlockerCode.CHECKS_FAILED,
    "NO_CHECKS_FOUND": BlockerCode.NO_CHECKS_FOUND,
    "SNAPSHOT_NOT_FOUND": BlockerCode.SNAPSHOT_NOT_FOUND,
    "PR_FETCH_FAILED": BlockerCode.PR_FETCH_FAILED,
}


def parse_state(value: Optional[str]) -> Optional[IssueState]:
    """Return the IssueState for a stored status, or None if unknown."""
    if not value:
        return None
    try:
        return IssueState(value)
    except ValueError:
        return None


def is_valid_transition(from_state: IssueState, to_state: IssueState) -> bool:
    """Whether the state machine permits ``from_state -> to_state``."""
    if from_state == to_state:
        return False
    return to_state in _TRANSITIONS.get(from_state, frozenset())


def get_blocker_description(code: BlockerCode) -> str:
    return _BLOCKER_DESCRIPTIONS.get(code, "Unknown blocker")


def blocker_code_for_gate_reason(reason: Optional[str]) -> BlockerCode:
    """Map a gate decision block reason onto a blocker code."""
    if reason is None:
        return BlockerCode.GATE_DECISION_FAILED
    return _GATE_REASON_CODES.get(reason, BlockerCode.GATE_DECISION_FAILED)


@dataclass(frozen=True)
class StepResolution:
    """Outcome of resolving the next step for an issue."""

    step: Optional[LoopStep]
    blocked: bool = False
    blocker_code: Optional[BlockerCode] = None
    blocker_message: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "step": self.step.value if self.step else None,
            "blocked": self.blocked,
            "blockerCode": self.blocker_code.value if self.blocker_code else None,
            "blockerMessage": self.blocker_message,
        }


def _spec_gate_resolution(issue, draft) -> StepResolution:
    committed = issue.handoff_state == "SYNCED" or (
        draft is not None and draft.last_validation_status == "valid"
    )
    if not committed:
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.NO_COMMITTED_DRAFT,
            blocker_message="S2 (Spec Ready) requires draft to be committed and validated",
        )
    if draft is not None and draft.last_validation_status == "invalid":
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.DRAFT_INVALID,
            blocker_message="Draft validation failed, cannot proceed to S2",
        )
    return StepResolution(step=LoopStep.S2_SPEC_READY)


def resolve_next_step(issue, draft=None) -> StepResolution:
    """Pick the step that should run next for ``issue``.

    Pure function over the issue row and its draft (if any). S6 is an
    observation step and is never chosen here; callers invoke it explicitly.
    """
    state = parse_state(issue.status)
    if state is None:
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.UNKNOWN_STATE,
            blocker_message=f"Unknown issue status: {issue.status}",
        )

    if state in TERMINAL_STATES or state == IssueState.HOLD:
        return StepResolution(
            step=None, blocker_message=f"No step to run: issue is {state.value}"
        )

    if state == IssueState.CREATED:
        if not (issue.github_url or "").strip():
            return StepResolution(
                step=None,
                blocked=True,
                blocker_code=BlockerCode.NO_GITHUB_LINK,
                blocker_message="S1 (Pick Issue) requires GitHub issue link",
            )
        if issue.current_draft_id or draft is not None:
            return _spec_gate_resolution(issue, draft)
        return StepResolution(step=LoopStep.S1_PICK_ISSUE)

    if state in PRE_SPEC_STATES:
        if not issue.current_draft_id and draft is None:
            return StepResolution(
                step=None,
                blocked=True,
                blocker_code=BlockerCode.NO_DRAFT,
                blocker_message="S2 (Spec Ready) requires a draft to be created",
            )
        return _spec_gate_resolution(issue, draft)

    next_steps = {
        IssueState.SPEC_READY: LoopStep.S3_IMPLEMENT_PREP,
        IssueState.IMPLEMENTING_PREP: LoopStep.S4_REVIEW,
        IssueState.REVIEW_READY: LoopStep.S5_MERGE,
        IssueState.DONE: LoopStep.S7_VERIFY_GATE,
        IssueState.VERIFIED: LoopStep.S8_CLOSE,
    }
    if state in next_steps:
        return StepResolution(step=next_steps[state])

    return StepResolution(
        step=None,
        blocked=True,
        blocker_code=BlockerCode.UNKNOWN_STATE,
        blocker_message=f"No loop step handles issue status: {state.value}",
    )
