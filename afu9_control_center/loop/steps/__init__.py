"""Step executor registry."""

from typing import Dict, Type

from ..state import LoopStep
from .base import StepExecutor
from .s1_pick import PickIssueExecutor
from .s2_spec import SpecGateExecutor
from .s3_implement import ImplementPrepExecutor
from .s4_review import ReviewGateExecutor
from .s5_merge import MergeExecutor
from .s6_deploy import DeploymentObserveExecutor
from .s7_verify import VerifyGateExecutor
from .s8_close import CloseExecutor
from .s9_remediate import RemediateExecutor

STEP_EXECUTORS: Dict[LoopStep, Type[StepExecutor]] = {
    LoopStep.S1_PICK_ISSUE: PickIssueExecutor,
    LoopStep.S2_SPEC_READY: SpecGateExecutor,
    LoopStep.S3_IMPLEMENT_PREP: ImplementPrepExecutor,
    LoopStep.S4_REVIEW: ReviewGateExecutor,
    LoopStep.S5_MERGE: MergeExecutor,
    LoopStep.S6_DEPLOYMENT_OBSERVE: DeploymentObserveExecutor,
    LoopStep.S7_VERIFY_GATE: VerifyGateExecutor,
    LoopStep.S8_CLOSE: CloseExecutor,
    LoopStep.S9_REMEDIATE: RemediateExecutor,
}

# HTTP/CLI action names
ACTION_STEPS: Dict[str, LoopStep] = {
    "pick": LoopStep.S1_PICK_ISSUE,
    "spec": LoopStep.S2_SPEC_READY,
    "implement": LoopStep.S3_IMPLEMENT_PREP,
    "review": LoopStep.S4_REVIEW,
    "merge": LoopStep.S5_MERGE,
    "deploy": LoopStep.S6_DEPLOYMENT_OBSERVE,
    "verify": LoopStep.S7_VERIFY_GATE,
    "close": LoopStep.S8_CLOSE,
    "remediate": LoopStep.S9_REMEDIATE,
}


def get_executor_class(step: LoopStep) -> Type[StepExecutor]:
    """Return the executor class for a step."""
    return STEP_EXECUTORS[LoopStep(step)]


__all__ = [
    "ACTION_STEPS",
    "STEP_EXECUTORS",
    "CloseExecutor",
    "DeploymentObserveExecutor",
    "ImplementPrepExecutor",
    "MergeExecutor",
    "PickIssueExecutor",
    "RemediateExecutor",
    "ReviewGateExecutor",
    "SpecGateExecutor",
    "StepExecutor",
    "VerifyGateExecutor",
    "get_executor_class",
]
