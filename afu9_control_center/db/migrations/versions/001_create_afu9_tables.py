"""Create AFU-9 tables

Revision ID: 001_create_afu9_tables
Revises:
Create Date: 2026-10-18

Issues, drafts, verdicts, closures, remediation records, control pack
assignments, evidence receipts, workflow merges, loop runs/steps/events and
the issue timeline.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_create_afu9_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "afu9_issues",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("body", sa.Text, nullable=True),
        sa.Column("labels", sa.JSON, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="CREATED"),
        sa.Column("handoff_state", sa.String(length=16), nullable=False, server_default="UNSYNCED"),
        sa.Column("github_url", sa.String(length=500), nullable=True),
        sa.Column("github_issue_number", sa.Integer, nullable=True),
        sa.Column("github_repo", sa.String(length=255), nullable=True),
        _timestamp("github_synced_at", nullable=True),
        sa.Column("assignee", sa.String(length=128), nullable=True),
        sa.Column("source_session_id", sa.String(length=64), nullable=True),
        sa.Column("current_draft_id", sa.String(length=36), nullable=True),
        sa.Column("active_cr_id", sa.String(length=64), nullable=True),
        sa.Column("pr_url", sa.String(length=500), nullable=True),
        sa.Column("merge_sha", sa.String(length=64), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_afu9_issues_status", "afu9_issues", ["status"])
    op.create_index("ix_afu9_issues_source_session_id", "afu9_issues", ["source_session_id"])

    op.create_table(
        "intent_issue_drafts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("issue_json", sa.JSON, nullable=False),
        sa.Column("issue_hash", sa.String(length=64), nullable=True),
        sa.Column(
            "last_validation_status", sa.String(length=16), nullable=False, server_default="unknown"
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_intent_issue_drafts_session_id", "intent_issue_drafts", ["session_id"], unique=True
    )

    op.create_table(
        "intent_issue_draft_versions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column(
            "draft_id",
            sa.String(length=36),
            sa.ForeignKey("intent_issue_drafts.id"),
            nullable=True,
        ),
        sa.Column("version_number", sa.Integer, nullable=False, server_default="1"),
        sa.Column("issue_hash", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("session_id", "version_number", name="uq_draft_version"),
    )
    op.create_index(
        "ix_intent_issue_draft_versions_session_id", "intent_issue_draft_versions", ["session_id"]
    )

    op.create_table(
        "verification_verdicts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("afu9_issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column("verdict", sa.String(length=8), nullable=False),
        sa.Column("rationale", sa.Text, nullable=True),
        sa.Column("failed_checks", sa.JSON, nullable=False),
        sa.Column("evaluation_rules", sa.JSON, nullable=False),
        sa.Column("evidence", sa.JSON, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_verification_verdicts_issue_created",
        "verification_verdicts",
        ["issue_id", "created_at"],
    )

    op.create_table(
        "issue_closures",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "issue_id",
            sa.String(length=36),
            sa.ForeignKey("afu9_issues.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column(
            "verification_verdict_id",
            sa.String(length=36),
            sa.ForeignKey("verification_verdicts.id"),
            nullable=False,
        ),
        sa.Column(
            "closure_reason", sa.String(length=64), nullable=False, server_default="GREEN_VERDICT"
        ),
        _timestamp("closed_at"),
    )

    op.create_table(
        "remediation_records",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("afu9_issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column("remediation_reason", sa.Text, nullable=False),
        sa.Column("failed_step", sa.String(length=32), nullable=True),
        sa.Column("blocker_code", sa.String(length=64), nullable=True),
        sa.Column("red_verdict", sa.JSON, nullable=True),
        sa.Column("failed_checks", sa.JSON, nullable=False),
        sa.Column(
            "remediation_status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_remediation_records_issue_created",
        "remediation_records",
        ["issue_id", "created_at"],
    )

    op.create_table(
        "control_pack_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("afu9_issues.id"), nullable=False),
        sa.Column("control_pack_id", sa.String(length=64), nullable=False),
        sa.Column("control_pack_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("assigned_by", sa.String(length=128), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("issue_id", "control_pack_id", name="uq_issue_control_pack"),
    )

    op.create_table(
        "issue_evidence",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("afu9_issues.id"), nullable=False),
        sa.Column("evidence_type", sa.String(length=64), nullable=False),
        sa.Column("evidence_data", sa.JSON, nullable=False),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_issue_evidence_evidence_type", "issue_evidence", ["evidence_type"])
    op.create_index("ix_issue_evidence_request_id", "issue_evidence", ["request_id"])

    op.create_table(
        "workflow_merges",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), sa.ForeignKey("afu9_issues.id"), nullable=False),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column("pr_url", sa.String(length=500), nullable=False),
        sa.Column("merge_sha", sa.String(length=64), nullable=True),
        sa.Column("merge_method", sa.String(length=16), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("issue_id", "merge_sha", name="uq_workflow_merge"),
    )

    # Loop runs, steps and events
    op.create_table(
        "loop_runs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("request_id", sa.String(length=64), nullable=False),
        sa.Column("mode", sa.String(length=16), nullable=False, server_default="execute"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        _timestamp("created_at"),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=False),
    )
    op.create_index("ix_loop_runs_issue_id", "loop_runs", ["issue_id"])
    op.create_index("ix_loop_runs_request_id", "loop_runs", ["request_id"])
    op.create_index("ix_loop_runs_status", "loop_runs", ["status"])
    op.create_index("ix_loop_runs_issue_created", "loop_runs", ["issue_id", "created_at"])

    op.create_table(
        "loop_run_steps",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("run_id", sa.String(length=36), sa.ForeignKey("loop_runs.id"), nullable=False),
        sa.Column("step_number", sa.Integer, nullable=False),
        sa.Column("step_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=False),
    )
    op.create_index("ix_loop_run_steps_run_id", "loop_run_steps", ["run_id"])
    op.create_index(
        "ix_loop_run_steps_run_number", "loop_run_steps", ["run_id", "step_number"], unique=True
    )

    op.create_table(
        "loop_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), nullable=False),
        sa.Column("run_id", sa.String(length=36), sa.ForeignKey("loop_runs.id"), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_data", sa.JSON, nullable=False),
        _timestamp("occurred_at"),
    )
    op.create_index("ix_loop_events_issue_id", "loop_events", ["issue_id"])
    op.create_index("ix_loop_events_run_id", "loop_events", ["run_id"])

    op.create_table(
        "issue_timeline",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("issue_id", sa.String(length=36), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_data", sa.JSON, nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("actor_type", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("run_id", sa.String(length=36), nullable=True),
        sa.Column("step", sa.String(length=32), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_issue_timeline_issue_id", "issue_timeline", ["issue_id"])
    op.create_index("ix_issue_timeline_event_type", "issue_timeline", ["event_type"])
    op.create_index("ix_issue_timeline_run_id", "issue_timeline", ["run_id"])
    op.create_index("ix_issue_timeline_issue_created", "issue_timeline", ["issue_id", "created_at"])
    op.create_index("ix_issue_timeline_run_step", "issue_timeline", ["run_id", "step"])


def downgrade() -> None:
    op.drop_table("issue_timeline")
    op.drop_table("loop_events")
    op.drop_table("loop_run_steps")
    op.drop_table("loop_runs")
    op.drop_table("workflow_merges")
    op.drop_table("issue_evidence")
    op.drop_table("control_pack_assignments")
    op.drop_table("remediation_records")
    op.drop_table("issue_closures")
    op.drop_table("verification_verdicts")
    op.drop_table("intent_issue_draft_versions")
    op.drop_table("intent_issue_drafts")
    op.drop_table("afu9_issues")
