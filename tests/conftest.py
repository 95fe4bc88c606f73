"""Test configuration and fixtures."""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from afu9_control_center.config import Settings
from afu9_control_center.db import loop_models, models  # noqa: F401
from afu9_control_center.db.base import Base
from afu9_control_center.db.models import (
    IssueDraftModel,
    IssueDraftVersionModel,
    IssueModel,
    VerificationVerdictModel,
)
from afu9_control_center.github.client import (
    CheckRun,
    Deployment,
    GitHubError,
    GitHubIssue,
    MergeResult,
    PullRequest,
    Review,
)
from afu9_control_center.loop.results import StepContext
from afu9_control_center.loop.state import ExecutionMode

PR_URL = "https://github.com/acme/widgets/pull/7"
ISSUE_URL = "https://github.com/acme/widgets/issues/3"
MERGE_SHA = "deadbeefcafe"

MUTATING_CALLS = ("merge_pr", "create_issue", "update_issue")


class FakeGitHub:
    """In-memory stand-in for GitHubClient.

    Every call is recorded in ``calls``; setting ``errors[method]`` makes that
    method raise the given GitHubError.
    """

    def __init__(self):
        self.prs: Dict[int, PullRequest] = {}
        self.reviews: Dict[int, List[Review]] = {}
        self.check_runs: Dict[str, List[CheckRun]] = {}
        self.deployments: Dict[str, List[Deployment]] = {}
        self.errors: Dict[str, GitHubError] = {}
        self.issues: Dict[int, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.merge_sha = MERGE_SHA
        self._next_issue_number = 100

    def _call(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.errors:
            raise self.errors[name]

    @property
    def mutating_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    def add_pr(
        self,
        number: int = 7,
        head_sha: str = "head123",
        merged: bool = False,
        state: str = "open",
        approved: bool = True,
        checks: Optional[List[CheckRun]] = None,
    ) -> PullRequest:
        """Register a PR that passes the merge gate unless told otherwise."""
        pr = PullRequest(
            number=number,
            state=state,
            merged=merged,
            merge_commit_sha=self.merge_sha if merged else None,
            head_sha=head_sha,
            html_url=f"https://github.com/acme/widgets/pull/{number}",
        )
        self.prs[number] = pr
        self.reviews[number] = (
            [Review(user="bob", state="APPROVED", submitted_at="2026-01-01T10:00:00Z")]
            if approved
            else []
        )
        self.check_runs[head_sha] = (
            checks
            if checks is not None
            else [CheckRun(name="ci", status="completed", conclusion="success")]
        )
        return pr

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        self._call("get_pr", owner, repo, number)
        if number not in self.prs:
            raise GitHubError("Not Found", status_code=404)
        return self.prs[number]

    async def merge_pr(self, owner: str, repo: str, number: int, merge_method: str = "squash"):
        self._call("merge_pr", owner, repo, number, merge_method)
        self.prs[number] = replace(
            self.prs[number], merged=True, state="closed", merge_commit_sha=self.merge_sha
        )
        return MergeResult(sha=self.merge_sha)

    async def list_reviews(self, owner: str, repo: str, number: int) -> List[Review]:
        self._call("list_reviews", owner, repo, number)
        return list(self.reviews.get(number, []))

    async def list_check_runs(self, owner: str, repo: str, ref: str) -> List[CheckRun]:
        self._call("list_check_runs", owner, repo, ref)
        return list(self.check_runs.get(ref, []))

    async def list_deployments(self, owner: str, repo: str, sha: str) -> List[Deployment]:
        self._call("list_deployments", owner, repo, sha)
        return list(self.deployments.get(sha, []))

    async def create_issue(self, owner, repo, title, body, labels) -> GitHubIssue:
        self._call("create_issue", owner, repo, title, body, labels)
        number = self._next_issue_number
        self._next_issue_number += 1
        self.issues[number] = {"title": title, "body": body, "labels": labels}
        return GitHubIssue(
            number=number, html_url=f"https://github.com/{owner}/{repo}/issues/{number}", state="open"
        )

    async def update_issue(self, owner, repo, number, title, body, labels) -> GitHubIssue:
        self._call("update_issue", owner, repo, number, title, body, labels)
        self.issues[number] = {"title": title, "body": body, "labels": labels}
        return GitHubIssue(
            number=number, html_url=f"https://github.com/{owner}/{repo}/issues/{number}", state="open"
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create a fresh in-memory database for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", publish_labels="afu9")


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def make_issue(db_session):
    """Factory for persisted issues."""

    def _make(status: str = "CREATED", **fields) -> IssueModel:
        values = {
            "id": str(uuid.uuid4()),
            "title": "Add retry to webhook sender",
            "body": "Webhook deliveries should retry on 5xx.",
            "labels": ["backend"],
            "status": status,
            "handoff_state": "UNSYNCED",
            "created_at": datetime.now(timezone.utc),
            "updated_at": datetime.now(timezone.utc),
        }
        values.update(fields)
        issue = IssueModel(**values)
        db_session.add(issue)
        db_session.commit()
        db_session.refresh(issue)
        return issue

    return _make


@pytest.fixture
def make_draft(db_session):
    """Factory for a drafting session's draft and its committed versions."""

    def _make(session_id: str, validation: str = "valid", versions: int = 1) -> IssueDraftModel:
        draft = IssueDraftModel(
            id=str(uuid.uuid4()),
            session_id=session_id,
            issue_json={"title": "Add retry"},
            issue_hash="hash-1",
            last_validation_status=validation,
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        db_session.add(draft)
        db_session.flush()
        for n in range(1, versions + 1):
            db_session.add(
                IssueDraftVersionModel(
                    id=str(uuid.uuid4()),
                    session_id=session_id,
                    draft_id=draft.id,
                    version_number=n,
                    issue_hash=f"hash-{n}",
                    created_at=datetime.now(timezone.utc),
                )
            )
        db_session.commit()
        db_session.refresh(draft)
        return draft

    return _make


@pytest.fixture
def make_verdict(db_session):
    """Factory for verification verdicts; later calls are strictly newer."""
    base = datetime.now(timezone.utc)
    counter = {"n": 0}

    def _make(issue_id: str, verdict: str = "GREEN", failed_checks=None) -> VerificationVerdictModel:
        counter["n"] += 1
        record = VerificationVerdictModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            verdict=verdict,
            rationale="test",
            failed_checks=list(failed_checks or []),
            evaluation_rules=["RULE_AUTHENTIC_DEPLOYMENT"],
            created_at=base + timedelta(seconds=counter["n"]),
        )
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record

    return _make


@pytest.fixture
def run_executor(db_session, github, settings):
    """Invoke an executor class for an issue the way the orchestrator does."""

    async def _run(
        executor_cls,
        issue_id: str,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
        params: Optional[Dict[str, Any]] = None,
        actor: str = "alice",
        mesh=None,
    ):
        executor = executor_cls(db_session, github=github, mesh=mesh, settings=settings)
        ctx = StepContext(
            issue_id=issue_id,
            run_id=str(uuid.uuid4()),
            request_id="req-1",
            actor=actor,
            mode=mode,
            params=params or {},
        )
        return await executor.execute(ctx)

    return _run
