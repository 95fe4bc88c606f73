"""GitHub integration."""

from .client import (
    CheckRun,
    Deployment,
    GitHubClient,
    GitHubError,
    GitHubIssue,
    MergeResult,
    PullRequest,
    Review,
)
from .urls import PullRequestRef, parse_pr_url, split_repo

__all__ = [
    "CheckRun",
    "Deployment",
    "GitHubClient",
    "GitHubError",
    "GitHubIssue",
    "MergeResult",
    "PullRequest",
    "PullRequestRef",
    "Review",
    "parse_pr_url",
    "split_repo",
]
