"""Missionforce CLI entry point."""

import typer
from rich.console import Console

from missionforce.api.cli.commands import missions, rules

app = typer.Typer(
    name="missionforce",
    help="Missionforce - goal-driven email missions with approval gates",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("create")(missions.create)
app.command("run")(missions.run)
app.command("approve")(missions.approve)
app.command("check")(missions.check)
app.command("show")(missions.show)
app.command("list")(missions.list_missions)
app.command("dashboard")(missions.dashboard)
app.command("close")(missions.close)
app.command("draft")(missions.draft)
app.command("delete")(missions.delete)
app.command("detect")(missions.detect)
app.add_typer(rules.app, name="rules", help="Autopilot rule management")


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("default", "--profile", "-p", help="Configuration profile"),
    owner: str = typer.Option("local", "--owner", "-o", envvar="MISSIONFORCE_OWNER", help="Owner id"),
    work_dir: str | None = typer.Option(None, "--work-dir", help="Override the storage directory"),
):
    """Missionforce CLI."""
    ctx.obj = {"profile": profile, "owner": owner, "work_dir": work_dir}


@app.command()
def version():
    """Show Missionforce version."""
    from missionforce import __version__

    console.print(f"[bold blue]Version:[/bold blue] [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
