"""CI Job Health: CLI runner.

Runs one refresh against the configured pipeline, prints page progress as
it arrives, then shows the ranked job table.

Configuration comes from the environment or a .env file:
    BUILDKITE_API_TOKEN, BUILDKITE_ORG, BUILDKITE_PIPELINE, BUILDKITE_BRANCH,
    BUILDKITE_BUILD_LIMIT, BUILDKITE_TARGET_COMMITS

Usage:
    uv run python cli.py
"""

import asyncio

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from aggregation.filters import filter_jobs
from core.runtime import DashboardRuntime
from integrations.errors import BuildSourceError
from schemas.events import FetchEvent, FetchEventType
from schemas.health import DashboardSnapshot, JobHealthAggregate
from schemas.settings import DashboardSettings
from utils.format import format_duration, relative_time

console = Console()

_STATE_COLORS = {
    "passed": "green",
    "failed": "red",
    "broken": "red",
    "timed_out": "red",
    "running": "blue",
    "waiting": "yellow",
    "unblocked": "yellow",
}


# ── Progress ──────────────────────────────────────────────────────────────────

async def _print_progress(queue: asyncio.Queue) -> None:
    """Print fetch events until the None sentinel arrives."""
    while True:
        event: FetchEvent | None = await queue.get()
        if event is None:
            break
        if event.event_type == FetchEventType.PAGE_FETCHED:
            console.print(f"  [dim]page {event.page}[/dim]  {event.message}")
        elif event.event_type == FetchEventType.STOPPED:
            console.print(f"  [dim]stopped:[/dim] {event.message}")
        elif event.event_type == FetchEventType.ERROR:
            console.print(f"  [red]page {event.page} failed[/red]")


# ── Results table ─────────────────────────────────────────────────────────────

def _last_duration(job: JobHealthAggregate) -> str:
    """Duration of the job in its newest build, "-" with no history."""
    if not job.builds:
        return "-"
    latest = job.builds[0]
    return format_duration(latest.started_at, latest.finished_at)


def _print_snapshot(snapshot: DashboardSnapshot) -> None:
    """Render the ranked jobs, optional jobs hidden."""
    jobs = filter_jobs(snapshot.jobs, hide_optional=True)
    hidden = len(snapshot.jobs) - len(jobs)

    table = Table(title="Job Health", show_lines=False, border_style="bright_black")
    table.add_column("#",        style="dim", width=4, justify="right")
    table.add_column("State",    width=10)
    table.add_column("Job",      style="bold", min_width=30)
    table.add_column("Runs",     width=6, justify="right")
    table.add_column("Last run", style="dim", width=10)
    table.add_column("Duration", style="dim", width=12)

    for i, job in enumerate(jobs, 1):
        color = _STATE_COLORS.get(job.last_state, "dim")
        table.add_row(
            str(i),
            f"[{color}]{job.last_state}[/{color}]",
            job.name,
            str(job.frequency),
            relative_time(job.last_run) if job.last_run else "-",
            _last_duration(job),
        )

    console.print()
    console.print(table)
    console.print(
        f"[dim]{snapshot.total_builds} builds, {snapshot.unique_commits} commits, "
        f"{hidden} optional jobs hidden[/dim]\n"
    )


# ── Entry point ───────────────────────────────────────────────────────────────

async def _run() -> int:
    settings = DashboardSettings.from_env()

    if not settings.has_credentials:
        console.print(
            "[yellow]No Buildkite token configured.[/yellow] "
            "Set BUILDKITE_API_TOKEN (and BUILDKITE_ORG / BUILDKITE_PIPELINE) in .env."
        )
        return 0

    console.rule("[bold]CI Job Health[/bold]")
    console.print(f"  pipeline  [cyan]{settings.org_slug}/{settings.pipeline_slug}[/cyan]")
    console.print(f"  branch    [cyan]{settings.branch}[/cyan]")
    console.print()

    runtime = DashboardRuntime(settings)
    event_queue: asyncio.Queue = asyncio.Queue()
    consumer = asyncio.create_task(_print_progress(event_queue))

    try:
        snapshot = await runtime.refresh(event_queue=event_queue)
    except BuildSourceError as exc:
        console.print(f"\n[bold red]✗ {exc}[/bold red]")
        return 1
    finally:
        await event_queue.put(None)   # sentinel: tell consumer to stop
        await consumer

    _print_snapshot(snapshot)
    return 0


def main() -> None:
    load_dotenv()
    raise SystemExit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
