"""CLI commands for inspecting and managing durable jobs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="jobs",
    help="Inspect durable jobs in MongoDB: list, show, cancel, retry.",
    no_args_is_help=True,
)
console = Console()

T = TypeVar("T")


def _get_store():
    """Open a JobStore straight against MongoDB (works without a running server)."""
    from cadence.config.settings import get_settings
    from cadence.jobs.store import JobStore

    settings = get_settings()
    if not settings.has_database:
        console.print("[red]MONGODB_URL is not set.[/red]")
        raise typer.Exit(1)
    return JobStore.connect(settings)


def _run(operation: Callable[[Any], Awaitable[T]]) -> T:
    async def _with_store() -> T:
        store = _get_store()
        try:
            return await operation(store)
        finally:
            store.close()

    return asyncio.run(_with_store())


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


_STATUS_STYLE = {
    "pending": "cyan",
    "in-progress": "yellow",
    "completed": "green",
    "error": "red",
}


@app.command("list")
def list_jobs(
    name: str | None = typer.Option(None, "--name", "-n", help="Only jobs with this handler name"),
    status: str | None = typer.Option(
        None, "--status", "-s", help="Filter: running or failed"
    ),
):
    """List job records, oldest first."""
    from cadence.jobs.engine import FAILED_QUERY, RUNNING_QUERY

    query: dict[str, Any] = {}
    if name:
        query["name"] = name
    if status == "running":
        query.update(RUNNING_QUERY)
    elif status == "failed":
        query.update(FAILED_QUERY)
    elif status is not None:
        console.print(f"[red]Unknown status filter '{status}'.[/red] Use running or failed.")
        raise typer.Exit(1)

    jobs = _run(lambda store: store.find(query))

    if not jobs:
        console.print("[dim]No jobs found.[/dim]")
        raise typer.Exit()

    table = Table(title="Jobs", show_lines=False)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Next run")
    table.add_column("Last run")
    table.add_column("Fails", justify="right")
    table.add_column("Repeat", style="dim")

    for job in jobs:
        style = _STATUS_STYLE.get(job.status, "white")
        table.add_row(
            job.id,
            job.name,
            f"[{style}]{job.status}[/{style}]",
            _fmt(job.next_run_at),
            _fmt(job.last_run_at),
            str(job.fail_count),
            job.repeat_interval or "",
        )

    console.print(table)
    console.print(f"\n  [dim]{len(jobs)} jobs total.[/dim]\n")


@app.command("show")
def show_job(
    job_id: str = typer.Argument(help="Job ID"),
):
    """Show every field of one job."""
    job = _run(lambda store: store.get(job_id))
    if job is None:
        console.print(f"[red]Job '{job_id}' not found.[/red]")
        raise typer.Exit(1)

    console.print()
    console.print(f"  [bold]ID:[/bold]          {job.id}")
    console.print(f"  [bold]Name:[/bold]        {job.name}")
    console.print(f"  [bold]Status:[/bold]      {job.status}")
    console.print(f"  [bold]Data:[/bold]        {job.data}")
    console.print(f"  [bold]Next run:[/bold]    {_fmt(job.next_run_at)}")
    console.print(f"  [bold]Last run:[/bold]    {_fmt(job.last_run_at)}")
    console.print(f"  [bold]Finished:[/bold]    {_fmt(job.last_finished_at)}")
    if job.repeat_interval:
        console.print(f"  [bold]Repeat:[/bold]      {job.repeat_interval}")
    if job.locked_at:
        console.print(f"  [bold]Locked:[/bold]      {_fmt(job.locked_at)} by {job.locked_by}")
    if job.failed_at:
        console.print(
            f"  [bold]Failed:[/bold]      {_fmt(job.failed_at)} "
            f"({job.fail_count}x): [red]{job.fail_reason}[/red]"
        )
    console.print()


@app.command("cancel")
def cancel_job(
    job_id: str = typer.Argument(help="Job ID to cancel"),
):
    """Delete a job record. A run already in progress is not interrupted."""
    if _run(lambda store: store.remove(job_id)):
        console.print(f"  [green]✓[/green] Cancelled job [bold]{job_id}[/bold].")
    else:
        console.print(f"[red]Job '{job_id}' not found.[/red]")
        raise typer.Exit(1)


@app.command("retry")
def retry_job(
    job_id: str = typer.Argument(help="Job ID to retry"),
):
    """Clear a job's failure state and make it due now.

    The running server's poller picks it up on its next cycle.
    """
    from cadence.config.settings import get_settings
    from cadence.jobs.models import utcnow

    lifetime = timedelta(seconds=get_settings().jobs.default_lock_lifetime_seconds)

    async def _retry(store):
        now = utcnow()
        job = await store.reset_for_retry(job_id, now, now - lifetime)
        exists = job is not None or await store.get(job_id) is not None
        return job, exists

    job, exists = _run(_retry)
    if job is not None:
        console.print(f"  [green]✓[/green] Requeued [bold]{job.name}[/bold] (ID: {job_id}).")
        console.print("  [dim]It runs on the server's next poll.[/dim]")
    elif exists:
        console.print(f"[yellow]Job '{job_id}' is running right now.[/yellow]")
        raise typer.Exit(1)
    else:
        console.print(f"[red]Job '{job_id}' not found.[/red]")
        raise typer.Exit(1)
