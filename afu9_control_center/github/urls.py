"""Parsing of GitHub URLs stored on AFU-9 issues."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_PR_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)")
_REPO_RE = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)$")


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_pr_url(url: Optional[str]) -> Optional[PullRequestRef]:
    """Extract owner, repo and PR number from a pull request URL.

    Examples:
        "https://github.com/acme/app/pull/42" -> PullRequestRef("acme", "app", 42)
        "https://github.com/acme/app/issues/42" -> None
    """
    if not url:
        return None
    match = _PR_URL_RE.search(url)
    if match is None:
        return None
    owner, repo, number = match.groups()
    return PullRequestRef(owner=owner, repo=repo, number=int(number))


def split_repo(full_name: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its parts. Raises ValueError if malformed."""
    match = _REPO_RE.match(full_name.strip())
    if match is None:
        raise ValueError(f"Invalid repository name: {full_name!r}")
    return match.group(1), match.group(2)
