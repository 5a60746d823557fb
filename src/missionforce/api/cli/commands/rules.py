"""Rules command - Manage autopilot rules."""

from __future__ import annotations

import json

import typer
from rich.table import Table

from missionforce.api.cli.common import build_engine, console, owner_of, run_async
from missionforce.core.domain.enums import RuleType

app = typer.Typer(help="Autopilot rule management")


@app.command("set")
def set_rule(
    ctx: typer.Context,
    rule_type: RuleType = typer.Argument(..., help="Rule type"),
    config: str = typer.Option("{}", "--config", "-c", help="Rule config as JSON"),
    disable: bool = typer.Option(False, "--disable", help="Store the rule disabled"),
):
    """Create or replace an autopilot rule."""
    try:
        parsed = json.loads(config)
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid JSON config: {exc}[/red]")
        raise typer.Exit(1) from exc
    engine = build_engine(ctx)
    rule = run_async(engine.set_rule(owner_of(ctx), rule_type, parsed, enabled=not disable))
    state = "enabled" if rule.enabled else "disabled"
    console.print(f"[green]Saved[/green] {rule.rule_type.value} ({state}) {json.dumps(rule.config)}")


@app.command("list")
def list_rules(ctx: typer.Context):
    """List autopilot rules."""
    engine = build_engine(ctx)
    rules = run_async(engine.list_rules(owner_of(ctx)))
    if not rules:
        console.print("[yellow]No autopilot rules set; every send needs approval[/yellow]")
        return
    table = Table(title="Autopilot Rules")
    table.add_column("Rule", style="cyan")
    table.add_column("Enabled")
    table.add_column("Config", style="white")
    for rule in rules:
        table.add_row(
            rule.rule_type.value,
            "[green]yes[/green]" if rule.enabled else "[dim]no[/dim]",
            json.dumps(rule.config),
        )
    console.print(table)
