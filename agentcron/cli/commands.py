"""agentcron CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from agentcron import __version__

app = typer.Typer(
    name="agentcron",
    help="agentcron - scheduled-job execution engine for agents",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agentcron v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """agentcron - scheduled-job execution engine for agents."""


def _open():
    from agentcron.core.config.loader import load_config
    from agentcron.storage.store import Store

    config = load_config()
    return config, Store(config.database.path)


# ════════════════════════════════════════════════════════════
# run / serve / dispatch — engine entrypoints
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    console.print(f"[green]Starting agentcron API on {host}:{port}[/green]")
    uvicorn.run("agentcron.api.app:app", host=host, port=port, reload=reload)


@app.command()
def dispatch() -> None:
    """Run one poll cycle and wait for the dispatched jobs to finish."""
    from agentcron.api.app import build_engine

    config, store = _open()
    engine = build_engine(config, store)

    async def _cycle():
        report = await engine["poller"].poll()
        results = await engine["executor"].drain()
        return report, results

    report, results = asyncio.run(_cycle())

    if not report.processed_count:
        console.print("[dim]No jobs due.[/dim]")
        return

    table = Table(title="Dispatch")
    table.add_column("Job", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Dispatched", style="green")
    table.add_column("Error", style="red")
    for r in report.results:
        table.add_row(r.job_id, r.title, str(r.success), r.error or "")
    console.print(table)

    failed = [r for r in results if not r.success]
    console.print(
        f"{report.success_count}/{report.processed_count} dispatched, "
        f"{len(results) - len(failed)} succeeded, {len(failed)} failed"
    )


@app.command()
def serve(
    interval: int | None = typer.Option(None, "--interval", "-i", help="Poll interval (seconds)"),
) -> None:
    """Poll for due jobs on an interval until interrupted."""
    from agentcron.api.app import build_engine
    from agentcron.core.jobs.service import PollingService

    config, store = _open()
    engine = build_engine(config, store)
    service = PollingService(
        engine["poller"], interval_s=interval or config.scheduler.poll_interval_s
    )

    async def _serve():
        await service.start()
        try:
            await asyncio.Event().wait()
        finally:
            await service.stop()
            await engine["executor"].shutdown()

    console.print(f"[green]Polling every {service.interval_s}s (Ctrl+C to stop)[/green]")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


# ════════════════════════════════════════════════════════════
# status
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and job counts."""
    config, store = _open()

    with store._get_conn() as conn:
        rows = conn.execute(
            "SELECT status, COUNT(*) FROM scheduled_jobs GROUP BY status"
        ).fetchall()
    counts = {r[0]: r[1] for r in rows}

    table = Table(title="agentcron status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Model", config.assistant.model)
    table.add_row("DB Path", config.database.path)
    table.add_row("Poll interval", f"{config.scheduler.poll_interval_s}s")
    table.add_row("Failure threshold", str(config.scheduler.failure_threshold))
    for name in ("active", "paused", "completed", "cancelled"):
        table.add_row(f"Jobs {name}", str(counts.get(name, 0)))

    console.print(table)


# ════════════════════════════════════════════════════════════
# agent — agent registry (sub-command group)
# ════════════════════════════════════════════════════════════

agent_app = typer.Typer(help="Manage agents")
app.add_typer(agent_app, name="agent")


@agent_app.command("add")
def agent_add(
    agent_id: str = typer.Argument(help="Agent ID"),
    user: str = typer.Option(..., "--user", "-u", help="Owner user ID"),
    name: str = typer.Option("Assistant", "--name", "-n", help="Agent name"),
    timezone: str | None = typer.Option(None, "--timezone", help="Owner timezone"),
) -> None:
    """Register an agent (and its owner's profile)."""
    _, store = _open()
    store.create_agent(agent_id, user, name=name)
    if timezone:
        store.upsert_user_profile(user, timezone=timezone)
    console.print(f"[green]Agent ready:[/green] {agent_id} (owner {user})")


# ════════════════════════════════════════════════════════════
# jobs — scheduled job management (sub-command group)
# ════════════════════════════════════════════════════════════

jobs_app = typer.Typer(help="Manage scheduled jobs")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("list")
def jobs_list(
    agent: str | None = typer.Option(None, "--agent", "-a", help="Filter by agent"),
    status_: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List scheduled jobs (paused ones show their failure reason)."""
    _, store = _open()
    jobs = store.list_jobs(agent_id=agent, status=status_)

    if not jobs:
        console.print("[dim]No scheduled jobs found.[/dim]")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Action", style="blue")
    table.add_column("Schedule", style="yellow")
    table.add_column("Next run", style="green")
    table.add_column("Status", style="magenta")
    table.add_column("Failures", style="red")
    table.add_column("Reason", style="dim")

    for job in jobs:
        table.add_row(
            job.id,
            job.title,
            job.action_type,
            job.cron_expression or "once",
            job.next_run_at or "-",
            job.status,
            str(job.consecutive_failures),
            job.failure_reason or "",
        )

    console.print(table)


@jobs_app.command("add")
def jobs_add(
    agent: str = typer.Option(..., "--agent", "-a", help="Owning agent ID"),
    title: str = typer.Option(..., "--title", "-t", help="Job title"),
    action: str = typer.Option("notify", "--action", help="notify | agent_task | webhook"),
    payload: str = typer.Option("{}", "--payload", help="Action payload (JSON)"),
    at: str | None = typer.Option(None, "--at", help="UTC ISO time for a one-time job"),
    cron: str | None = typer.Option(None, "--cron", help="Cron expression for a recurring job"),
    timezone: str | None = typer.Option(None, "--timezone", help="Cron timezone"),
    max_runs: int | None = typer.Option(None, "--max-runs", help="Complete after N runs"),
) -> None:
    """Create a scheduled job."""
    from agentcron.core.errors import ScheduleError
    from agentcron.core.jobs.schedule import schedule_job

    config, store = _open()
    try:
        action_payload = json.loads(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid payload JSON:[/red] {e}")
        raise typer.Exit(1)
    try:
        job = schedule_job(
            store, agent, title, action, action_payload,
            run_at=at, cron_expression=cron,
            timezone=timezone or config.scheduler.default_timezone,
            max_runs=max_runs,
        )
    except ScheduleError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Job created:[/green] {job.id} (next run {job.next_run_at})")


@jobs_app.command("reactivate")
def jobs_reactivate(job_id: str = typer.Argument(help="Paused job ID")) -> None:
    """Reactivate a paused job and reset its failure counter."""
    from agentcron.core.errors import JobNotFoundError, JobStateError
    from agentcron.core.jobs.breaker import FailureCircuitBreaker

    _, store = _open()
    try:
        job = FailureCircuitBreaker(store).reactivate(job_id)
    except (JobNotFoundError, JobStateError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Reactivated:[/green] {job.id} (next run {job.next_run_at})")


@jobs_app.command("cancel")
def jobs_cancel(job_id: str = typer.Argument(help="Job ID")) -> None:
    """Cancel a job; it is never selected again."""
    _, store = _open()
    if not store.cancel_job(job_id):
        console.print(f"[yellow]Job not cancellable:[/yellow] {job_id}")
        raise typer.Exit(1)
    console.print(f"[green]Cancelled:[/green] {job_id}")


@jobs_app.command("executions")
def jobs_executions(
    job_id: str = typer.Argument(help="Job ID"),
    limit: int = typer.Option(10, "--limit", "-n", help="Max rows"),
) -> None:
    """Show the execution history of a job."""
    _, store = _open()
    executions = store.list_executions(job_id, limit=limit)

    if not executions:
        console.print("[dim]No executions found.[/dim]")
        return

    table = Table(title=f"Executions of {job_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Started", style="dim")
    table.add_column("Steps", style="blue")
    table.add_column("Error", style="red")

    for e in executions:
        table.add_row(e.id, e.status, e.started_at or "", ", ".join(e.checkpoint), e.error or "")

    console.print(table)
