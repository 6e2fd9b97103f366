"""Cadence CLI: the main entry point."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.table import Table

from cadence import __version__
from cadence.cli.jobs_commands import app as jobs_app

app = typer.Typer(
    name="cadence",
    help="Durable MongoDB-backed jobs and in-process cron timers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
timers_app = typer.Typer(
    name="timers",
    help="Inspect the built-in cron timer presets.",
    no_args_is_help=True,
)
app.add_typer(jobs_app, name="jobs")
app.add_typer(timers_app, name="timers")
console = Console()

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


@app.callback(invoke_without_command=True)
def version_callback(
    version: bool = typer.Option(False, "--version", "-v", help="Show version"),
):
    if version:
        console.print(f"cadence [dim]v{__version__}[/dim]")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
):
    """Run the HTTP API with the job poller and timers."""
    import uvicorn

    from cadence.config.settings import get_settings
    from cadence.server.app import create_app

    settings = get_settings()
    configure_logging(settings.log_level)

    host = host or settings.server.host
    port = port or settings.server.port

    if not settings.has_database:
        console.print(
            "[yellow]MONGODB_URL is not set.[/yellow] Job endpoints will answer 503; "
            "timers still run."
        )
    console.print(f"  [bold]Cadence[/bold] [dim]v{__version__}[/dim] at http://{host}:{port}")
    console.print(f"  [bold]Docs:[/bold] http://{host}:{port}/docs")

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


@timers_app.command("presets")
def list_presets():
    """List the preset timer tasks that /api/v1/cron can start."""
    from cadence.timers.models import PRESETS

    table = Table(title="Timer Presets", show_lines=False)
    table.add_column("ID", style="bold")
    table.add_column("Expression")
    table.add_column("Description", style="dim")

    for preset in PRESETS:
        table.add_row(preset.id, preset.expression, preset.description)

    console.print(table)
    console.print(f"\n  [dim]{len(PRESETS)} presets.[/dim]\n")


if __name__ == "__main__":
    app()
