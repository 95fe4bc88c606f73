"""
GitHub REST client used by the step executors and the publish orchestrator.

Only the handful of calls the lifecycle needs are wrapped. Every HTTP or
transport failure is raised as ``GitHubError`` so callers can translate it
into a blocker code without knowing about httpx.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class GitHubError(Exception):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "GITHUB_API_ERROR",
            "status_code": self.status_code,
            "message": self.message,
        }


@dataclass
class PullRequest:
    number: int
    state: str  # open | closed
    merged: bool
    merge_commit_sha: Optional[str] = None
    head_sha: Optional[str] = None
    html_url: Optional[str] = None
    merged_at: Optional[str] = None


@dataclass
class MergeResult:
    sha: str
    merged: bool = True
    message: Optional[str] = None


@dataclass
class Review:
    user: str
    state: str  # APPROVED | CHANGES_REQUESTED | COMMENTED | DISMISSED
    submitted_at: Optional[str] = None


@dataclass
class CheckRun:
    name: str
    status: str  # queued | in_progress | completed
    conclusion: Optional[str] = None


@dataclass
class GitHubIssue:
    number: int
    html_url: str
    state: str = "open"


@dataclass
class Deployment:
    id: int
    environment: str
    sha: str
    created_at: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "environment": self.environment,
            "sha": self.sha,
            "created_at": self.created_at,
        }


class GitHubClient:
    """Async client for the GitHub REST API."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response)
            logger.error(f"GitHub {method} {path} failed ({e.response.status_code}): {message}")
            raise GitHubError(message, status_code=e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"GitHub {method} {path} request error: {e}")
            raise GitHubError(str(e)) from e

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_pr(self, owner: str, repo: str, number: int) -> PullRequest:
        data = await self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        return PullRequest(
            number=data["number"],
            state=data["state"],
            merged=bool(data.get("merged")),
            merge_commit_sha=data.get("merge_commit_sha"),
            head_sha=(data.get("head") or {}).get("sha"),
            html_url=data.get("html_url"),
            merged_at=data.get("merged_at"),
        )

    async def merge_pr(
        self, owner: str, repo: str, number: int, method: str = "squash"
    ) -> MergeResult:
        """Merge a pull request.

        GitHub answers 405 when the PR is not mergeable and 409 on a head
        mismatch; both surface as GitHubError with GitHub's message text.
        """
        data = await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/pulls/{number}/merge",
            json={"merge_method": method},
        )
        return MergeResult(
            sha=data["sha"], merged=bool(data.get("merged", True)), message=data.get("message")
        )

    async def list_reviews(self, owner: str, repo: str, number: int) -> List[Review]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{number}/reviews",
            params={"per_page": 100},
        )
        return [
            Review(
                user=(item.get("user") or {}).get("login", "unknown"),
                state=item.get("state", ""),
                submitted_at=item.get("submitted_at"),
            )
            for item in data or []
        ]

    async def list_check_runs(self, owner: str, repo: str, ref: str) -> List[CheckRun]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/commits/{ref}/check-runs",
            params={"per_page": 100},
        )
        return [
            CheckRun(
                name=item.get("name", ""),
                status=item.get("status", ""),
                conclusion=item.get("conclusion"),
            )
            for item in (data or {}).get("check_runs", [])
        ]

    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: List[str]
    ) -> GitHubIssue:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues",
            json={"title": title, "body": body, "labels": labels},
        )
        return GitHubIssue(
            number=data["number"], html_url=data["html_url"], state=data.get("state", "open")
        )

    async def update_issue(
        self,
        owner: str,
        repo: str,
        number: int,
        title: str,
        body: str,
        labels: List[str],
    ) -> GitHubIssue:
        data = await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/{number}",
            json={"title": title, "body": body, "labels": labels},
        )
        return GitHubIssue(
            number=data["number"], html_url=data["html_url"], state=data.get("state", "open")
        )

    async def list_deployments(self, owner: str, repo: str, sha: str) -> List[Deployment]:
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/deployments",
            params={"sha": sha, "per_page": 100},
        )
        return [
            Deployment(
                id=item["id"],
                environment=item.get("environment", ""),
                sha=item.get("sha", sha),
                created_at=item.get("created_at"),
                payload=item.get("payload") or {},
            )
            for item in data or []
        ]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"
