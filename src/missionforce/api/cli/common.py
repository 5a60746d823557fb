"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
import typer
from rich.console import Console
from rich.table import Table

from missionforce.application.factory import EngineFactory
from missionforce.application.mission_engine import MissionEngine
from missionforce.core.domain.enums import MissionStatus, StepStatus
from missionforce.core.domain.errors import MissionforceError
from missionforce.core.domain.mission import Mission

console = Console()

T = TypeVar("T")

STATUS_STYLES = {
    MissionStatus.DRAFT: "dim",
    MissionStatus.THINKING: "cyan",
    MissionStatus.EXECUTING: "blue",
    MissionStatus.WAITING_ON_USER: "yellow",
    MissionStatus.WAITING_ON_OTHER: "magenta",
    MissionStatus.AT_RISK: "red",
    MissionStatus.COMPLETED: "green",
    MissionStatus.FAILED: "bold red",
}

STEP_STYLES = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "blue",
    StepStatus.DONE: "green",
    StepStatus.FAILED: "red",
    StepStatus.WAITING: "yellow",
}


def configure_logging(level_name: str | None) -> None:
    """Configure structlog from ``LOGLEVEL`` or the profile's level."""
    name = (os.environ.get("LOGLEVEL") or level_name or "WARNING").upper()
    level = getattr(logging, name, logging.WARNING)
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def global_options(ctx: typer.Context) -> dict[str, Any]:
    return ctx.obj or {}


def owner_of(ctx: typer.Context) -> str:
    return str(global_options(ctx).get("owner", "local"))


def build_engine(ctx: typer.Context) -> MissionEngine:
    opts = global_options(ctx)
    factory = EngineFactory()
    try:
        config = factory.loader.load_safe(opts.get("profile", "default"))
    except MissionforceError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from exc
    configure_logging(config.logging.level)
    return factory.create_from_config(config, work_dir=opts.get("work_dir"))


def run_async(awaitable: Awaitable[T]) -> T:
    """Run a coroutine, turning engine errors into a clean exit."""

    async def _inner() -> T:
        return await awaitable

    try:
        return asyncio.run(_inner())
    except MissionforceError as exc:
        console.print(f"[red]Error ({exc.code}):[/red] {exc.message}")
        raise typer.Exit(1) from exc


def status_text(status: MissionStatus) -> str:
    return f"[{STATUS_STYLES[status]}]{status.value}[/{STATUS_STYLES[status]}]"


def missions_table(missions: list[Mission], title: str = "Missions") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Goal", style="white")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Nudges", justify="right")
    table.add_column("Deadline", style="dim")
    for mission in missions:
        done = sum(1 for s in mission.steps if s.status == StepStatus.DONE)
        table.add_row(
            mission.id,
            mission.goal,
            status_text(mission.status),
            f"{done}/{len(mission.steps)}",
            f"{mission.nudge_count}/{mission.max_nudges}",
            mission.deadline.date().isoformat() if mission.deadline else "-",
        )
    return table


def print_mission(mission: Mission) -> None:
    console.print(f"\n[bold]Mission:[/bold] {mission.id}")
    console.print(f"[bold]Goal:[/bold] {mission.goal}")
    console.print(f"[bold]Status:[/bold] {status_text(mission.status)}")
    if mission.linked_thread_ids:
        console.print(f"[bold]Threads:[/bold] {', '.join(mission.linked_thread_ids)}")

    table = Table(title="Steps")
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Label", style="white")
    table.add_column("Status")
    table.add_column("Error", style="red")
    for step in mission.ordered_steps():
        style = STEP_STYLES[step.status]
        table.add_row(
            str(step.order),
            step.action_type.value,
            step.label,
            f"[{style}]{step.status.value}[/{style}]",
            step.error or "",
        )
    console.print(table)

    proposal = mission.latest_proposal()
    if proposal and mission.status == MissionStatus.WAITING_ON_USER:
        console.print("\n[bold yellow]Proposed reply[/bold yellow]")
        console.print(f"To: {', '.join(proposal.get('to') or []) or '-'}")
        console.print(f"Subject: {proposal.get('subject') or '-'}")
        console.print(proposal.get("body") or "")
    if mission.thoughts:
        console.print(f"\n[dim]{mission.thoughts[-1]}[/dim]")
