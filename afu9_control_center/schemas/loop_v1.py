from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr

from ..loop.state import ExecutionMode
from ..verification import VerificationEvidence


class StepRequest(BaseModel):
    """Body of ``POST /api/afu9/s1s9/issues/{issue_id}/{action}``.

    The remediation fields are only read by the remediate action.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    mode: ExecutionMode = ExecutionMode.EXECUTE
    request_id: Optional[constr(min_length=1, max_length=128)] = Field(
        default=None, alias="requestId"
    )

    remediation_reason: Optional[str] = Field(default=None, alias="remediationReason")
    failed_step: Optional[str] = Field(default=None, alias="failedStep")
    blocker_code: Optional[str] = Field(default=None, alias="blockerCode")
    red_verdict: Optional[Dict[str, Any]] = Field(default=None, alias="redVerdict")
    failed_checks: Optional[List[str]] = Field(default=None, alias="failedChecks")

    def params(self) -> Dict[str, Any]:
        """Executor params: the optional fields that were supplied."""
        return {
            name: value
            for name, value in (
                ("remediation_reason", self.remediation_reason),
                ("failed_step", self.failed_step),
                ("blocker_code", self.blocker_code),
                ("red_verdict", self.red_verdict),
                ("failed_checks", self.failed_checks),
            )
            if value is not None
        }


class NextStepRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    mode: ExecutionMode = ExecutionMode.EXECUTE
    request_id: Optional[constr(min_length=1, max_length=128)] = Field(
        default=None, alias="requestId"
    )


class PublishRequest(BaseModel):
    """Body of ``POST /api/afu9/issues/{issue_id}/publish``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    owner: constr(min_length=1, max_length=100)
    repo: constr(min_length=1, max_length=100)
    request_id: Optional[constr(min_length=1, max_length=128)] = Field(
        default=None, alias="requestId"
    )
    labels: List[constr(min_length=1, max_length=50)] = Field(default_factory=list)


class VerdictRequest(BaseModel):
    """Body of ``POST /api/afu9/issues/{issue_id}/verdicts``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    evidence: VerificationEvidence
    run_id: Optional[str] = Field(default=None, alias="runId")
