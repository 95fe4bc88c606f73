"""
AFU-9 API Routes.

Step endpoints run one S1-S9 executor for an issue inside a loop run and
answer with the step wire form plus ``runId``. Blocked steps answer 409.

The actor id comes from the header set by the upstream auth gate
(``x-afu9-sub`` by default); requests without it are rejected with 401.
The comma-separated groups header is bound to the log context alongside it.
"""

import uuid
from typing import Any, AsyncIterator, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db
from .github.client import GitHubClient
from .loop.event_store import EvidenceService, TimelineService
from .loop.issue_store import IssueRepository
from .loop.mesh import DatabaseWorkflowMesh, WorkflowMesh
from .loop.orchestrator import LoopOrchestrator, LoopRunOutcome
from .loop.run_store import LoopRunStore
from .loop.steps import ACTION_STEPS
from .publish import PublishOrchestrator
from .schemas.loop_v1 import NextStepRequest, PublishRequest, StepRequest, VerdictRequest
from .verification import VerificationService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/afu9", tags=["AFU-9"])


# =============================================================================
# Dependencies
# =============================================================================


async def get_github_client(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[GitHubClient]:
    """GitHub client for the duration of one request."""
    client = GitHubClient(
        base_url=settings.github_api_url,
        token=settings.github_token,
        timeout=settings.github_timeout_seconds,
    )
    try:
        yield client
    finally:
        await client.close()


def get_workflow_mesh(db: Session = Depends(get_db)) -> WorkflowMesh:
    return DatabaseWorkflowMesh(db)


async def get_actor(request: Request, settings: Settings = Depends(get_settings)) -> str:
    """Actor id from the auth gate header.

    The actor and its groups are bound to the structlog context so every log
    line of the request carries them.
    """
    actor = request.headers.get(settings.actor_header, "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="Unauthorized")
    groups = [
        group.strip()
        for group in request.headers.get(settings.groups_header, "").split(",")
        if group.strip()
    ]
    structlog.contextvars.bind_contextvars(actor=actor, actor_groups=groups)
    return actor


def get_orchestrator(
    db: Session = Depends(get_db),
    github: GitHubClient = Depends(get_github_client),
    mesh: WorkflowMesh = Depends(get_workflow_mesh),
    settings: Settings = Depends(get_settings),
) -> LoopOrchestrator:
    return LoopOrchestrator(db, github=github, mesh=mesh, settings=settings)


def _outcome_response(outcome: LoopRunOutcome) -> JSONResponse:
    data = outcome.to_dict()
    return JSONResponse(status_code=409 if data["blocked"] else 200, content=data)


def _require_issue(db: Session, issue_id: str) -> None:
    if IssueRepository(db).get(issue_id) is None:
        raise HTTPException(status_code=404, detail=f"Issue not found: {issue_id}")


# =============================================================================
# Step Endpoints
# =============================================================================


@router.post("/s1s9/issues/{issue_id}/next")
async def run_next_step(
    issue_id: str,
    body: NextStepRequest = NextStepRequest(),
    actor: str = Depends(get_actor),
    orchestrator: LoopOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Resolve the next step for an issue and run it."""
    request_id = body.request_id or str(uuid.uuid4())
    outcome = await orchestrator.run_next_step(issue_id, actor, request_id, mode=body.mode)
    return _outcome_response(outcome)


@router.post("/s1s9/issues/{issue_id}/{action}")
async def run_step(
    issue_id: str,
    action: str,
    body: StepRequest = StepRequest(),
    actor: str = Depends(get_actor),
    orchestrator: LoopOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Run a single lifecycle step for an issue."""
    step = ACTION_STEPS.get(action)
    if step is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown action '{action}'. Valid actions: {', '.join(ACTION_STEPS)}",
        )

    request_id = body.request_id or str(uuid.uuid4())
    outcome = await orchestrator.run_step(
        issue_id,
        step,
        actor=actor,
        request_id=request_id,
        mode=body.mode,
        params=body.params(),
    )
    return _outcome_response(outcome)


@router.get("/issues/{issue_id}/next-step")
async def get_next_step(
    issue_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Resolve the next step without running it."""
    orchestrator = LoopOrchestrator(db)
    return orchestrator.resolve(issue_id).to_dict()


# =============================================================================
# Run History
# =============================================================================


@router.get("/issues/{issue_id}/runs")
async def list_runs(
    issue_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List loop runs for an issue, newest first."""
    _require_issue(db, issue_id)
    store = LoopRunStore(db)
    runs = store.list_runs_by_issue(issue_id, limit=limit, offset=offset)
    return {
        "issueId": issue_id,
        "runs": [run.to_dict() for run in runs],
        "total": store.count_runs_by_issue(issue_id),
        "limit": limit,
        "offset": offset,
    }


@router.get("/runs/{run_id}")
async def get_run(run_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Get a loop run with its steps."""
    run = LoopRunStore(db).get_run_with_steps(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run.to_dict(include_steps=True)


# =============================================================================
# Timeline & Evidence
# =============================================================================


@router.get("/issues/{issue_id}/timeline")
async def get_timeline(
    issue_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List an issue's timeline events, oldest first."""
    _require_issue(db, issue_id)
    timeline = TimelineService(db)
    events = timeline.list_for_issue(issue_id, limit=limit, offset=offset)
    return {
        "issueId": issue_id,
        "events": [event.to_dict() for event in events],
        "total": timeline.count_for_issue(issue_id),
    }


@router.get("/issues/{issue_id}/evidence")
async def get_evidence(issue_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """List the publish receipts recorded for an issue."""
    _require_issue(db, issue_id)
    records = EvidenceService(db).list_for_issue(issue_id)
    return {"issueId": issue_id, "evidence": [r.to_dict() for r in records]}


# =============================================================================
# Publish & Verdicts
# =============================================================================


@router.post("/issues/{issue_id}/publish")
async def publish_issue(
    issue_id: str,
    body: PublishRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    github: GitHubClient = Depends(get_github_client),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Publish an issue to GitHub."""
    _require_issue(db, issue_id)
    publisher = PublishOrchestrator(db, github, settings=settings)
    result = await publisher.publish_issue(
        issue_id,
        body.owner,
        body.repo,
        request_id=body.request_id,
        user_id=actor,
        labels=body.labels,
    )
    return JSONResponse(status_code=200 if result.success else 409, content=result.to_dict())


@router.post("/issues/{issue_id}/verdicts", status_code=201)
async def record_verdict(
    issue_id: str,
    body: VerdictRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Evaluate verification evidence and store the verdict."""
    verdict = VerificationService(db).record(
        issue_id, body.evidence, run_id=body.run_id, actor=actor
    )
    return verdict.to_dict()


@router.get("/issues/{issue_id}/verdicts")
async def list_verdicts(issue_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """List verdicts for an issue, newest first."""
    _require_issue(db, issue_id)
    return {"issueId": issue_id, "verdicts": VerificationService(db).list_for_issue(issue_id)}
