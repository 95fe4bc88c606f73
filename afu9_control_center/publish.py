"""
Publish Orchestrator.

Publishes an AFU-9 issue to GitHub (create, or update when the issue is
already mirrored) and records the evidence trail for it:

1. Validate: the issue exists, is not CLOSED/KILLED, has an active CR bound
   and, when already mirrored, targets the repository it is mirrored to
2. Render ``{title, body, labels}`` and hash it
3. Create or update the GitHub issue
4. Update the mirror fields (never the lifecycle status)
5. Timeline: PUBLISHING_STARTED, PUBLISHED, GITHUB_MIRRORED, CP_ASSIGNED
6. Evidence: PUBLISH_RECEIPT, GITHUB_MIRROR_RECEIPT
7. Assign the default control pack (once per issue)

A GitHub failure moves the issue to HOLD with handoff_state FAILED and records
PUBLISH_FAILED. ``publish_issue`` always returns a PublishResult; it does not
raise for publish failures.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import ControlPackAssignmentModel, IssueModel
from .github.client import GitHubError
from .github.urls import split_repo
from .loop.event_store import EvidenceService, EvidenceType, TimelineEventType, TimelineService
from .loop.issue_store import IssueRepository
from .loop.state import TERMINAL_STATES, IssueState, parse_state

logger = structlog.get_logger()


@dataclass
class RenderedIssue:
    title: str
    body: str
    labels: List[str]


@dataclass
class PublishResult:
    success: bool
    issue_id: str
    public_id: Optional[str] = None
    action: Optional[str] = None  # created | updated
    github_issue_number: Optional[int] = None
    github_url: Optional[str] = None
    rendered_hash: Optional[str] = None
    timeline_events: List[str] = field(default_factory=list)
    evidence_records: List[str] = field(default_factory=list)
    cp_assignments: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "issue_id": self.issue_id,
            "public_id": self.public_id,
            "action": self.action,
            "github_issue_number": self.github_issue_number,
            "github_url": self.github_url,
            "rendered_hash": self.rendered_hash,
            "timeline_events": list(self.timeline_events),
            "evidence_records": list(self.evidence_records),
            "cp_assignments": list(self.cp_assignments),
            "error": self.error,
        }


def render_issue(issue: IssueModel) -> RenderedIssue:
    """Render an issue into the GitHub issue format."""
    body = issue.body or ""
    footer = f"\n\n---\nAFU-9 issue `{issue.public_id}`"
    if issue.active_cr_id:
        footer += f" · CR `{issue.active_cr_id}`"
    return RenderedIssue(
        title=f"[{issue.public_id}] {issue.title}",
        body=body + footer,
        labels=list(issue.labels or []),
    )


def compute_rendered_hash(title: str, body: str, labels: List[str]) -> str:
    """Stable fingerprint of rendered content. Label order does not matter."""
    content = json.dumps({"title": title, "body": body, "labels": sorted(labels)})
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class PublishOrchestrator:
    """Publishes issues to GitHub and records the publish evidence."""

    def __init__(self, db: Session, github: Any, settings: Optional[Settings] = None):
        self.db = db
        self.github = github
        self.settings = settings or get_settings()
        self.issues = IssueRepository(db)
        self.timeline = TimelineService(db)
        self.evidence = EvidenceService(db)

    def _default_labels(self) -> List[str]:
        return [l.strip() for l in self.settings.publish_labels.split(",") if l.strip()]

    def _validate(
        self, issue_id: str, owner: str, repo: str
    ) -> tuple[Optional[IssueModel], Optional[str]]:
        issue = self.issues.get(issue_id)
        if issue is None:
            return None, f"Issue not found: {issue_id}"
        if parse_state(issue.status) in TERMINAL_STATES:
            return issue, f"Issue is {issue.status} and cannot be published"
        if not issue.active_cr_id:
            return issue, (
                "No active CR bound to issue. "
                "Please bind a Change Request before publishing."
            )
        # an existing mirror is only ever updated in the repository it lives in
        if issue.github_issue_number and issue.github_repo:
            mirrored_owner, mirrored_repo = split_repo(issue.github_repo)
            if (mirrored_owner.lower(), mirrored_repo.lower()) != (owner.lower(), repo.lower()):
                return issue, (
                    f"Issue is already mirrored to {issue.github_repo} "
                    f"(#{issue.github_issue_number}), cannot publish to {owner}/{repo}"
                )
        return issue, None

    async def publish_issue(
        self,
        issue_id: str,
        owner: str,
        repo: str,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> PublishResult:
        """Publish an issue to ``owner/repo``.

        Args:
            issue_id: Issue to publish
            owner: GitHub repository owner
            repo: GitHub repository name
            request_id: Correlation id, used as the receipt batch id
            user_id: Publishing user; "system" when absent
            labels: Extra labels appended to the issue's own labels

        Returns:
            PublishResult describing what happened
        """
        request_id = request_id or str(uuid.uuid4())
        actor = user_id or "system"
        actor_type = "user" if user_id else "system"
        log = logger.bind(issue_id=issue_id, request_id=request_id, repo=f"{owner}/{repo}")

        issue, error = self._validate(issue_id, owner, repo)
        if error is not None:
            log.warning("publish_validation_failed", error=error)
            return PublishResult(success=False, issue_id=issue_id, error=error)

        result = PublishResult(success=False, issue_id=issue_id, public_id=issue.public_id)

        try:
            started = self.timeline.record(
                issue_id,
                TimelineEventType.PUBLISHING_STARTED,
                {"owner": owner, "repo": repo, "request_id": request_id},
                actor=actor,
                actor_type=actor_type,
            )
            result.timeline_events.append(started.id)

            rendered = render_issue(issue)
            all_labels = list(rendered.labels)
            for label in self._default_labels() + list(labels or []):
                if label not in all_labels:
                    all_labels.append(label)
            rendered_hash = compute_rendered_hash(rendered.title, rendered.body, all_labels)
            result.rendered_hash = rendered_hash

            state_before = issue.status
            try:
                if issue.github_issue_number:
                    action = "updated"
                    gh_issue = await self.github.update_issue(
                        owner, repo, issue.github_issue_number, rendered.title, rendered.body, all_labels
                    )
                else:
                    action = "created"
                    gh_issue = await self.github.create_issue(
                        owner, repo, rendered.title, rendered.body, all_labels
                    )
            except GitHubError as e:
                log.error("publish_github_failed", error=e.message)
                failed = self._mark_failed(issue, state_before, e.message, actor, actor_type, owner, repo)
                result.timeline_events.append(failed)
                result.error = f"GitHub publish failed: {e.message}"
                return result

            now = datetime.now(timezone.utc)
            self.issues.update_mirror(
                issue_id,
                github_issue_number=gh_issue.number,
                github_url=gh_issue.html_url,
                github_repo=f"{owner}/{repo}",
                github_synced_at=now,
                handoff_state="SYNCED",
                last_error=None,
            )
            result.action = action
            result.github_issue_number = gh_issue.number
            result.github_url = gh_issue.html_url

            published = self.timeline.record(
                issue_id,
                TimelineEventType.PUBLISHED,
                {
                    "github_issue_number": gh_issue.number,
                    "github_url": gh_issue.html_url,
                    "action": action,
                    "rendered_hash": rendered_hash,
                    "owner": owner,
                    "repo": repo,
                },
                actor=actor,
                actor_type=actor_type,
            )
            mirrored = self.timeline.record(
                issue_id,
                TimelineEventType.GITHUB_MIRRORED,
                {
                    "github_issue_number": gh_issue.number,
                    "github_url": gh_issue.html_url,
                    "synced_at": now.isoformat(),
                },
                actor="system",
                actor_type="system",
            )
            result.timeline_events.extend([published.id, mirrored.id])

            publish_receipt = self.evidence.record(
                issue_id,
                EvidenceType.PUBLISH_RECEIPT,
                {
                    "batch_id": request_id,
                    "github_issue_number": gh_issue.number,
                    "github_url": gh_issue.html_url,
                    "repo": f"{owner}/{repo}",
                    "action": action,
                    "published_at": now.isoformat(),
                    "rendered_hash": rendered_hash,
                    "labels_applied": all_labels,
                },
                request_id=request_id,
            )
            mirror_receipt = self.evidence.record(
                issue_id,
                EvidenceType.GITHUB_MIRROR_RECEIPT,
                {
                    "github_issue_number": gh_issue.number,
                    "github_url": gh_issue.html_url,
                    "synced_at": now.isoformat(),
                    "batch_id": request_id,
                    "mirror_status": "SYNCED",
                },
                request_id=request_id,
            )
            result.evidence_records.extend([publish_receipt.id, mirror_receipt.id])

            assignment = self.assign_default_control_pack(issue_id, actor)
            if assignment is not None:
                result.cp_assignments.append(assignment.id)
                cp_event = self.timeline.record(
                    issue_id,
                    TimelineEventType.CP_ASSIGNED,
                    {
                        "control_pack_id": assignment.control_pack_id,
                        "control_pack_name": assignment.control_pack_name,
                        "assigned_by": actor,
                    },
                    actor=actor,
                    actor_type="system",
                )
                result.timeline_events.append(cp_event.id)

            result.success = True
            log.info(
                "issue_published",
                action=action,
                github_issue_number=gh_issue.number,
                rendered_hash=rendered_hash,
            )
            return result

        except Exception as e:
            log.exception("publish_failed", error=str(e))
            self.db.rollback()
            event = self.timeline.record(
                issue_id,
                TimelineEventType.ERROR_OCCURRED,
                {"error": str(e), "context": "publish", "request_id": request_id},
                actor="system",
                actor_type="system",
            )
            result.timeline_events.append(event.id)
            result.success = False
            result.error = str(e)
            return result

    def _mark_failed(
        self,
        issue: IssueModel,
        state_before: str,
        message: str,
        actor: str,
        actor_type: str,
        owner: str,
        repo: str,
    ) -> str:
        """Put the issue on HOLD after a GitHub failure and log PUBLISH_FAILED."""
        state = parse_state(state_before)
        if state is not None and state != IssueState.HOLD:
            moved = self.issues.transition(
                issue.id,
                state,
                IssueState.HOLD,
                handoff_state="FAILED",
                last_error=message,
            )
            if not moved:
                self.issues.update_mirror(issue.id, handoff_state="FAILED", last_error=message)
        else:
            self.issues.update_mirror(issue.id, handoff_state="FAILED", last_error=message)

        event = self.timeline.record(
            issue.id,
            TimelineEventType.PUBLISH_FAILED,
            {
                "error": message,
                "owner": owner,
                "repo": repo,
                "stateBefore": state_before,
                "stateAfter": IssueState.HOLD.value,
            },
            actor=actor,
            actor_type=actor_type,
        )
        return event.id

    def assign_default_control_pack(
        self, issue_id: str, assigned_by: str
    ) -> Optional[ControlPackAssignmentModel]:
        """Assign the default control pack.

        Returns:
            The new assignment, or None if the issue already has it
        """
        cp_id = self.settings.default_control_pack_id
        existing = (
            self.db.query(ControlPackAssignmentModel)
            .filter(
                ControlPackAssignmentModel.issue_id == issue_id,
                ControlPackAssignmentModel.control_pack_id == cp_id,
            )
            .first()
        )
        if existing is not None:
            return None

        assignment = ControlPackAssignmentModel(
            id=str(uuid.uuid4()),
            issue_id=issue_id,
            control_pack_id=cp_id,
            control_pack_name=self.settings.default_control_pack_name,
            status="active",
            assigned_by=assigned_by,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(assignment)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return None
        self.db.refresh(assignment)
        return assignment
