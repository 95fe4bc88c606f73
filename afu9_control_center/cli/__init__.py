"""
Command Line Interface for the AFU-9 Control Center.
"""

import asyncio
import json
import uuid
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..github.client import GitHubClient
from ..loop.event_store import TimelineService
from ..loop.orchestrator import LoopOrchestrator, LoopRunOutcome
from ..loop.results import LoopError
from ..loop.run_store import LoopRunStore
from ..loop.state import ExecutionMode
from ..loop.steps import ACTION_STEPS

app = typer.Typer(help="AFU-9 Control Center - issue lifecycle loop")
console = Console()


def _mode(dry_run: bool) -> ExecutionMode:
    return ExecutionMode.DRY_RUN if dry_run else ExecutionMode.EXECUTE


def _print_outcome(outcome: LoopRunOutcome) -> None:
    data = outcome.to_dict()
    if data["blocked"]:
        title = f"🔴 Blocked: {data['blockerCode']}"
        style = "bold red"
    else:
        title = "🟢 Completed"
        style = "bold green"

    table = Table(title=title, show_header=False, title_style=style)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key in ("runId", "runStatus", "step", "stateBefore", "stateAfter", "message"):
        table.add_row(key, str(data.get(key)))
    if data.get("fieldsChanged"):
        table.add_row("fieldsChanged", ", ".join(data["fieldsChanged"]))
    console.print(table)


async def _run(issue_id: str, action: Optional[str], actor: str, mode: ExecutionMode, params: dict):
    settings = get_settings()
    db = get_session_local()()
    try:
        async with GitHubClient(
            base_url=settings.github_api_url,
            token=settings.github_token,
            timeout=settings.github_timeout_seconds,
        ) as github:
            orchestrator = LoopOrchestrator(db, github=github, settings=settings)
            request_id = str(uuid.uuid4())
            if action is None:
                return await orchestrator.run_next_step(issue_id, actor, request_id, mode=mode)
            return await orchestrator.run_step(
                issue_id, ACTION_STEPS[action], actor, request_id, mode=mode, params=params
            )
    finally:
        db.close()


@app.command()
def serve(
    port: int = typer.Option(8000, help="Port to run the API server on"),
    host: str = typer.Option("0.0.0.0", help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Run with auto-reload"),
):
    """Start the API server."""
    rprint(Panel.fit("🏗️ Starting AFU-9 Control Center", style="bold blue"))
    uvicorn.run("afu9_control_center.main:app", host=host, port=port, reload=dev)


@app.command("init-db")
def init_db():
    """Create all database tables."""
    asyncio.run(init_database())
    console.print("✅ Database initialized")


@app.command()
def step(
    issue_id: str = typer.Argument(..., help="Issue id"),
    action: str = typer.Argument(..., help=f"One of: {', '.join(ACTION_STEPS)}"),
    actor: str = typer.Option("cli", help="Actor recorded on the run and evidence"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Evaluate without mutating state"),
    reason: Optional[str] = typer.Option(None, help="Remediation reason (remediate only)"),
    failed_step: Optional[str] = typer.Option(None, help="Failed step (remediate only)"),
    params: str = typer.Option("{}", help="Extra executor params as JSON"),
):
    """Run one lifecycle step for an issue."""
    if action not in ACTION_STEPS:
        console.print(f"❌ Unknown action '{action}'. Valid: {', '.join(ACTION_STEPS)}")
        raise typer.Exit(code=2)

    try:
        extra = json.loads(params)
    except json.JSONDecodeError as e:
        console.print(f"❌ Invalid JSON params: {e}")
        raise typer.Exit(code=2)
    if reason is not None:
        extra["remediation_reason"] = reason
    if failed_step is not None:
        extra["failed_step"] = failed_step

    try:
        outcome = asyncio.run(_run(issue_id, action, actor, _mode(dry_run), extra))
    except LoopError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    _print_outcome(outcome)
    if outcome.to_dict()["blocked"]:
        raise typer.Exit(code=3)


@app.command("next")
def next_step(
    issue_id: str = typer.Argument(..., help="Issue id"),
    actor: str = typer.Option("cli", help="Actor recorded on the run and evidence"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Evaluate without mutating state"),
):
    """Resolve and run the next step for an issue."""
    try:
        outcome = asyncio.run(_run(issue_id, None, actor, _mode(dry_run), {}))
    except LoopError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    _print_outcome(outcome)
    if outcome.to_dict()["blocked"]:
        raise typer.Exit(code=3)


@app.command()
def runs(
    issue_id: str = typer.Argument(..., help="Issue id"),
    limit: int = typer.Option(20, help="Maximum number of runs"),
):
    """List loop runs for an issue."""
    db = get_session_local()()
    try:
        items = LoopRunStore(db).list_runs_by_issue(issue_id, limit=limit)
        table = Table(title=f"Runs for {issue_id}", show_header=True, header_style="bold magenta")
        table.add_column("Run", style="cyan")
        table.add_column("Status")
        table.add_column("Mode")
        table.add_column("Actor")
        table.add_column("Created")
        table.add_column("Duration (ms)", justify="right")
        for run in items:
            data = run.to_dict()
            table.add_row(
                data["id"],
                data["status"],
                data["mode"],
                data["actor"],
                str(data["created_at"]),
                str(data["duration_ms"] if data["duration_ms"] is not None else ""),
            )
        console.print(table)
    finally:
        db.close()


@app.command()
def timeline(
    issue_id: str = typer.Argument(..., help="Issue id"),
    limit: int = typer.Option(100, help="Maximum number of events"),
):
    """Show an issue's timeline."""
    db = get_session_local()()
    try:
        events = TimelineService(db).list_for_issue(issue_id, limit=limit)
        table = Table(title=f"Timeline for {issue_id}", show_header=True, header_style="bold magenta")
        table.add_column("When", style="cyan")
        table.add_column("Event")
        table.add_column("Step")
        table.add_column("Actor")
        table.add_column("Message")
        for event in events:
            data = event.to_dict()
            table.add_row(
                str(data["created_at"]),
                data["event_type"],
                data.get("step") or "",
                data["actor"],
                str((data.get("event_data") or {}).get("message", "")),
            )
        console.print(table)
    finally:
        db.close()


if __name__ == "__main__":
    app()
