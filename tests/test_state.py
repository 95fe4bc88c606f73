"""
Tests for the lifecycle state machine.

Verifies:
- transition table rules (terminal states, HOLD, self-transitions)
- blocker code vocabulary and gate reason mapping
- the next-step resolver table
"""

from types import SimpleNamespace

import pytest

from afu9_control_center.loop.state import (
    PRE_SPEC_STATES,
    TERMINAL_STATES,
    BlockerCode,
    IssueState,
    LoopStep,
    blocker_code_for_gate_reason,
    get_blocker_description,
    is_valid_transition,
    parse_state,
    resolve_next_step,
)


def _issue(status, **fields):
    values = {
        "status": status,
        "github_url": "https://github.com/acme/widgets/issues/3",
        "current_draft_id": None,
        "handoff_state": "UNSYNCED",
        "assignee": None,
    }
    values.update(fields)
    return SimpleNamespace(**values)


def _draft(status="valid"):
    return SimpleNamespace(id="draft-1", last_validation_status=status)


class TestTransitions:
    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (IssueState.CREATED, IssueState.SPEC_READY),
            (IssueState.CR_BOUND, IssueState.SPEC_READY),
            (IssueState.SPEC_READY, IssueState.IMPLEMENTING_PREP),
            (IssueState.IMPLEMENTING_PREP, IssueState.REVIEW_READY),
            (IssueState.REVIEW_READY, IssueState.DONE),
            (IssueState.DONE, IssueState.VERIFIED),
            (IssueState.VERIFIED, IssueState.CLOSED),
            (IssueState.DONE, IssueState.HOLD),
        ],
    )
    def test_forward_transitions_are_valid(self, from_state, to_state):
        assert is_valid_transition(from_state, to_state)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES))
    def test_terminal_states_have_no_exits(self, terminal):
        for target in IssueState:
            assert not is_valid_transition(terminal, target)

    def test_hold_has_no_exits(self):
        for target in IssueState:
            assert not is_valid_transition(IssueState.HOLD, target)

    def test_self_transition_is_invalid(self):
        for state in IssueState:
            assert not is_valid_transition(state, state)

    def test_skipping_steps_is_invalid(self):
        assert not is_valid_transition(IssueState.CREATED, IssueState.DONE)
        assert not is_valid_transition(IssueState.SPEC_READY, IssueState.REVIEW_READY)
        assert not is_valid_transition(IssueState.DONE, IssueState.CLOSED)

    def test_every_non_terminal_state_can_reach_hold(self):
        for state in IssueState:
            if state in TERMINAL_STATES or state == IssueState.HOLD:
                continue
            assert is_valid_transition(state, IssueState.HOLD), state

    def test_parse_state(self):
        assert parse_state("DONE") == IssueState.DONE
        assert parse_state("NOT_A_STATE") is None
        assert parse_state(None) is None


class TestBlockerCodes:
    def test_every_code_has_description(self):
        for code in BlockerCode:
            assert get_blocker_description(code)

    @pytest.mark.parametrize(
        "reason,expected",
        [
            ("NO_REVIEW_APPROVAL", BlockerCode.NO_REVIEW_APPROVAL),
            ("CHANGES_REQUESTED", BlockerCode.CHANGES_REQUESTED),
            ("CHECKS_PENDING", BlockerCode.CHECKS_PENDING),
            ("CHECKS_FAILED", BlockerCode.CHECKS_FAILED),
            ("NO_CHECKS_FOUND", BlockerCode.NO_CHECKS_FOUND),
            ("PR_FETCH_FAILED", BlockerCode.PR_FETCH_FAILED),
        ],
    )
    def test_gate_reason_mapping(self, reason, expected):
        assert blocker_code_for_gate_reason(reason) == expected

    def test_unknown_gate_reason_falls_back(self):
        assert blocker_code_for_gate_reason("SOMETHING_NEW") == BlockerCode.GATE_DECISION_FAILED
        assert blocker_code_for_gate_reason(None) == BlockerCode.GATE_DECISION_FAILED


class TestResolveNextStep:
    def test_created_without_link_is_blocked(self):
        resolution = resolve_next_step(_issue("CREATED", github_url=None))
        assert resolution.blocked
        assert resolution.blocker_code == BlockerCode.NO_GITHUB_LINK
        assert resolution.step is None

    def test_created_without_draft_picks(self):
        resolution = resolve_next_step(_issue("CREATED"))
        assert resolution.step == LoopStep.S1_PICK_ISSUE
        assert not resolution.blocked

    def test_created_with_valid_draft_goes_to_spec_gate(self):
        resolution = resolve_next_step(_issue("CREATED"), _draft("valid"))
        assert resolution.step == LoopStep.S2_SPEC_READY

    def test_uncommitted_draft_is_blocked(self):
        resolution = resolve_next_step(_issue("DRAFT_READY", current_draft_id="d"), _draft("unknown"))
        assert resolution.blocker_code == BlockerCode.NO_COMMITTED_DRAFT

    def test_invalid_draft_is_blocked(self):
        resolution = resolve_next_step(
            _issue("VERSION_COMMITTED", current_draft_id="d", handoff_state="SYNCED"),
            _draft("invalid"),
        )
        assert resolution.blocker_code == BlockerCode.DRAFT_INVALID

    def test_pre_spec_without_draft_is_blocked(self):
        for state in PRE_SPEC_STATES - {IssueState.CREATED}:
            resolution = resolve_next_step(_issue(state.value))
            assert resolution.blocker_code == BlockerCode.NO_DRAFT

    @pytest.mark.parametrize(
        "status,step",
        [
            ("SPEC_READY", LoopStep.S3_IMPLEMENT_PREP),
            ("IMPLEMENTING_PREP", LoopStep.S4_REVIEW),
            ("REVIEW_READY", LoopStep.S5_MERGE),
            ("DONE", LoopStep.S7_VERIFY_GATE),
            ("VERIFIED", LoopStep.S8_CLOSE),
        ],
    )
    def test_linear_states(self, status, step):
        assert resolve_next_step(_issue(status)).step == step

    @pytest.mark.parametrize("status", ["HOLD", "CLOSED", "KILLED"])
    def test_resting_states_have_no_step(self, status):
        resolution = resolve_next_step(_issue(status))
        assert resolution.step is None
        assert not resolution.blocked

    def test_unknown_status_is_blocked(self):
        resolution = resolve_next_step(_issue("LIMBO"))
        assert resolution.blocked
        assert resolution.blocker_code == BlockerCode.UNKNOWN_STATE

    def test_resolution_to_dict(self):
        data = resolve_next_step(_issue("SPEC_READY")).to_dict()
        assert data == {
            "step": "S3_IMPLEMENT_PREP",
            "blocked": False,
            "blockerCode": None,
            "blockerMessage": None,
        }
