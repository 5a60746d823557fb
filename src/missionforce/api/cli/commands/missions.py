"""Mission commands - create, run, approve, inspect and detect missions."""

from __future__ import annotations

import json
from datetime import datetime

import typer
from rich.table import Table

from missionforce.api.cli.common import (
    build_engine,
    console,
    missions_table,
    owner_of,
    print_mission,
    run_async,
    status_text,
)
from missionforce.application.escalation_monitor import MonitorAction
from missionforce.core.domain.enums import MissionStatus
from missionforce.core.utils.time import parse_timestamp


def _parse_deadline(value: str | None) -> datetime | None:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise typer.BadParameter(
            f"'{value}' is not an ISO-8601 date or timestamp (e.g. 2026-03-06T17:00:00Z)"
        ) from exc


def create(
    ctx: typer.Context,
    goal: str = typer.Argument(..., help="What the mission should achieve"),
    thread_id: str | None = typer.Option(None, "--thread-id", "-t", help="Known thread id"),
    deadline: datetime | None = typer.Option(
        None, "--deadline", help="ISO-8601 due date", parser=_parse_deadline
    ),
    success: str | None = typer.Option(None, "--success", help="Success condition"),
    max_nudges: int | None = typer.Option(None, "--max-nudges", help="Follow-up budget"),
    run: bool = typer.Option(False, "--run", help="Run the plan right away"),
):
    """Create and plan a mission."""
    engine = build_engine(ctx)
    owner = owner_of(ctx)

    async def _create():
        mission = await engine.create_mission(
            owner,
            goal,
            success_condition=success,
            thread_id=thread_id,
            deadline=deadline,
            max_nudges=max_nudges,
        )
        if run and mission.status == MissionStatus.EXECUTING:
            mission = await engine.run_mission(owner, mission.id)
        return mission

    mission = run_async(_create())
    console.print(f"[green]Created mission[/green] [cyan]{mission.id}[/cyan]")
    print_mission(mission)


def run(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
):
    """Execute a mission's pending steps."""
    engine = build_engine(ctx)
    mission = run_async(engine.run_mission(owner_of(ctx), mission_id))
    print_mission(mission)


def approve(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
    to: str | None = typer.Option(None, "--to", help="Override recipients (comma separated)"),
    subject: str | None = typer.Option(None, "--subject", help="Override subject"),
    body: str | None = typer.Option(None, "--body", help="Override body"),
    approved_by: str = typer.Option("user", "--approved-by", help="Approver id"),
):
    """Approve the pending reply or booking and resume the mission."""
    engine = build_engine(ctx)
    payload = {"to": to, "subject": subject, "body": body}
    mission = run_async(
        engine.approve(
            owner_of(ctx),
            mission_id,
            {k: v for k, v in payload.items() if v is not None},
            approved_by=approved_by,
        )
    )
    print_mission(mission)


def check(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
):
    """Run the escalation monitor for a mission."""
    engine = build_engine(ctx)
    result = run_async(engine.check_mission(owner_of(ctx), mission_id))
    if result.report is not None:
        report = result.report
        console.print(
            f"Idle for [bold]{report.days_since_activity:.1f}[/bold] day(s), "
            f"deadline: {report.deadline_warning.value}, "
            f"follow-up limit reached: {report.follow_up_limit_reached}"
        )
    if result.action == MonitorAction.NONE:
        console.print("[dim]No action needed[/dim]")
    else:
        console.print(f"[bold]Action:[/bold] {result.action.value}")
    print_mission(result.mission)


def show(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
    as_json: bool = typer.Option(False, "--json", help="Print the stored record"),
):
    """Show a mission."""
    engine = build_engine(ctx)
    mission = run_async(engine.get_mission(owner_of(ctx), mission_id))
    if as_json:
        console.print_json(json.dumps(mission.to_dict(), default=str))
        return
    print_mission(mission)


def list_missions(
    ctx: typer.Context,
    status: MissionStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    due_today: bool = typer.Option(False, "--due-today", help="Only missions due today"),
    at_risk: bool = typer.Option(False, "--at-risk", help="Only missions at risk"),
):
    """List missions."""
    engine = build_engine(ctx)
    missions = run_async(
        engine.list_missions(owner_of(ctx), status=status, due_today=due_today, at_risk=at_risk)
    )
    if not missions:
        console.print("[yellow]No missions found[/yellow]")
        return
    console.print(missions_table(missions))


def dashboard(ctx: typer.Context):
    """Show missions bucketed by what needs attention."""
    engine = build_engine(ctx)
    board = run_async(engine.dashboard(owner_of(ctx)))
    counts = board.counts()
    console.print(
        "  ".join(f"[bold]{name.replace('_', ' ')}[/bold]: {count}" for name, count in counts.items())
    )
    for name in ("due_today", "at_risk", "waiting", "active"):
        missions = getattr(board, name)
        if missions:
            console.print(missions_table(missions, title=name.replace("_", " ").title()))


def close(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
    outcome: str = typer.Option("Completed", "--outcome", help="Closing summary"),
):
    """Close a mission as completed."""
    engine = build_engine(ctx)
    mission = run_async(engine.close_mission(owner_of(ctx), mission_id, outcome))
    console.print(f"Mission [cyan]{mission.id}[/cyan] is {status_text(mission.status)}")


def draft(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
):
    """Save the latest proposed reply as a mailbox draft."""
    engine = build_engine(ctx)
    response = run_async(engine.save_proposal_as_draft(owner_of(ctx), mission_id))
    console.print(f"[green]Saved draft[/green] [cyan]{response['draft_id']}[/cyan]")


def delete(
    ctx: typer.Context,
    mission_id: str = typer.Argument(..., help="Mission id"),
):
    """Delete a mission."""
    engine = build_engine(ctx)
    if run_async(engine.delete_mission(owner_of(ctx), mission_id)):
        console.print(f"[green]Deleted[/green] {mission_id}")
    else:
        console.print(f"[red]Mission not found: {mission_id}[/red]")
        raise typer.Exit(1)


def detect(
    ctx: typer.Context,
    create_all: bool = typer.Option(False, "--create", help="Create a mission for every suggestion"),
):
    """Suggest missions from recent mail."""
    engine = build_engine(ctx)
    owner = owner_of(ctx)

    async def _detect():
        suggestions = await engine.suggest_missions(owner)
        created = []
        if create_all:
            for suggestion in suggestions:
                created.append(await engine.create_from_suggestion(owner, suggestion))
        return suggestions, created

    suggestions, created = run_async(_detect())
    if not suggestions:
        console.print("[yellow]No missions suggested[/yellow]")
        return

    table = Table(title="Suggested missions")
    table.add_column("#", justify="right")
    table.add_column("Title", style="white")
    table.add_column("Success condition", style="dim")
    table.add_column("Threads", style="cyan")
    for index, suggestion in enumerate(suggestions, start=1):
        table.add_row(
            str(index),
            suggestion.title,
            suggestion.success_condition,
            ", ".join(suggestion.linked_thread_ids) or "-",
        )
    console.print(table)
    for mission in created:
        console.print(f"[green]Created mission[/green] [cyan]{mission.id}[/cyan] {mission.goal}")
