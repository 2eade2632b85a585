"""cronpost jobs command - Manage scheduled HTTP jobs."""

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cronpost.cli.error_handler import ValidationError, handle_errors
from cronpost.cli.exit_codes import ExitCode
from cronpost.cli.output import (
    format_datetime,
    format_duration_ms,
    json_output,
    print_json,
    print_result,
)

app = typer.Typer(help="Manage scheduled HTTP jobs.")
console = Console()
logger = logging.getLogger(__name__)


def get_service():
    """Build a JobService on the configured database, creating tables if needed."""
    from cronpost.config import get_config
    from cronpost.database.connection import create_tables
    from cronpost.service import JobService

    config = get_config()
    create_tables(config)
    return JobService(search_years=config.scheduler.search_years)


def notify_daemon() -> None:
    """Tell a running daemon to re-sync so an edit takes effect right away."""
    from cronpost.config import get_config
    from cronpost.daemon.pid import PIDFile

    if not hasattr(signal, "SIGHUP"):
        return

    try:
        pid = PIDFile(get_config().pid_file).send_signal(signal.SIGHUP)
    except OSError as e:
        logger.warning(f"Could not notify the daemon: {e}")
        return
    if pid is not None:
        logger.debug(f"Sent SIGHUP to daemon (PID: {pid})")


def _next_run(schedule: str) -> Optional[datetime]:
    from cronpost.config import get_config
    from cronpost.scheduler.cron import parse_schedule
    from cronpost.scheduler.exceptions import ScheduleError

    config = get_config()
    now = datetime.now(ZoneInfo(config.scheduler.timezone))
    try:
        return parse_schedule(schedule, config.scheduler.search_years).next_fire_time(now)
    except ScheduleError:
        return None


def _read_body(body: Optional[str], body_file: Optional[Path]) -> Optional[str]:
    if body is not None and body_file is not None:
        raise ValidationError("Use either --body or --body-file, not both")
    if body_file is not None:
        return body_file.read_text()
    return body


@app.command("list")
@handle_errors
def list_jobs(
    status: str = typer.Option(
        "all",
        "--status",
        "-s",
        help="Filter by status (active, paused, all).",
    ),
) -> None:
    """List all jobs.

    Example:
        cronpost jobs list
        cronpost jobs list --status active
    """
    from cronpost.scheduler.cron import describe_schedule

    if status not in ("active", "paused", "all"):
        raise ValidationError(f"Invalid status '{status}'. Choose from: active, paused, all")

    jobs = get_service().list_jobs()
    if status == "active":
        jobs = [j for j in jobs if j.is_active]
    elif status == "paused":
        jobs = [j for j in jobs if not j.is_active]

    if json_output():
        print_json([
            {**job.to_dict(), "next_run": _next_run(job.schedule) if job.is_active else None}
            for job in jobs
        ])
        return

    if not jobs:
        console.print("[dim]No jobs found.[/dim]")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("URL")
    table.add_column("Schedule", style="green")
    table.add_column("Description", style="dim")
    table.add_column("Status", style="bold")
    table.add_column("Next Run")

    for job in jobs:
        status_str = "[green]active[/green]" if job.is_active else "[yellow]paused[/yellow]"
        next_run = format_datetime(_next_run(job.schedule)) if job.is_active else "-"
        table.add_row(
            job.id,
            job.url,
            job.schedule,
            describe_schedule(job.schedule),
            status_str,
            next_run,
        )

    console.print(table)


@app.command("show")
@handle_errors
def show_job(
    job_id: str = typer.Argument(..., help="ID of the job."),
) -> None:
    """Show one job and its most recent executions.

    Example:
        cronpost jobs show nightly-report
    """
    service = get_service()
    job = service.get_job(job_id)
    logs = service.get_logs(job_id=job_id, limit=5)

    if json_output():
        print_json({
            **job.to_dict(),
            "next_run": _next_run(job.schedule) if job.is_active else None,
            "recent_executions": [r.to_dict() for r in logs],
        })
        return

    console.print(f"[bold cyan]{job.id}[/bold cyan]")
    console.print(f"  URL: {escape(job.url)}")
    console.print(f"  Schedule: {job.schedule}")
    console.print(f"  Status: {'active' if job.is_active else 'paused'}")
    console.print(f"  Body: {escape(job.body) if job.body else '-'}")
    console.print(f"  Secret: {'set' if job.secret else '-'}")
    console.print(f"  Created: {format_datetime(job.created_at)} by {job.created_by}")
    if job.is_active:
        console.print(f"  Next run: {format_datetime(_next_run(job.schedule))}")

    if logs:
        console.print("  Recent executions:")
        for record in logs:
            code = record.response_code if record.response_code is not None else "-"
            console.print(
                f"    {format_datetime(record.timestamp)}  {record.status.value:<7}  "
                f"{code}  {format_duration_ms(record.duration_ms)}"
            )


@app.command("create")
@handle_errors
def create_job(
    job_id: str = typer.Argument(..., help="Unique job ID (letters, digits, '-', '_')."),
    url: str = typer.Option(
        ...,
        "--url",
        "-u",
        help="URL that receives the POST request.",
    ),
    schedule: str = typer.Option(
        ...,
        "--schedule",
        "-s",
        help="Cron schedule expression (e.g., '*/5 * * * *' for every 5 minutes).",
    ),
    body: Optional[str] = typer.Option(
        None,
        "--body",
        "-b",
        help="Request body sent with every call.",
    ),
    body_file: Optional[Path] = typer.Option(
        None,
        "--body-file",
        help="Read the request body from a file.",
        exists=True,
        dir_okay=False,
    ),
    secret: Optional[str] = typer.Option(
        None,
        "--secret",
        help="Sent as 'Authorization: Bearer <secret>'.",
    ),
    paused: bool = typer.Option(
        False,
        "--paused",
        help="Create the job without scheduling it.",
    ),
    created_by: str = typer.Option(
        "cronpost",
        "--created-by",
        help="Creator tag stored with the job.",
    ),
) -> None:
    """Create a new scheduled job.

    Example:
        cronpost jobs create ping --url https://example.com/api/cron --schedule "*/5 * * * *"
        cronpost jobs create report --url https://example.com/report -s "0 9 * * 1-5" --secret s3cret
    """
    job = get_service().create_job(
        job_id=job_id,
        url=url,
        schedule=schedule,
        body=_read_body(body, body_file),
        secret=secret,
        is_active=not paused,
        created_by=created_by,
    )
    notify_daemon()

    next_run = _next_run(job.schedule) if job.is_active else None
    if json_output():
        print_json({**job.to_dict(), "next_run": next_run})
        return

    print_result(True, f"Job created: {job.id}", {
        "URL": job.url,
        "Schedule": job.schedule,
        "Next run": format_datetime(next_run) if next_run else "paused",
    }, console)


@app.command("update")
@handle_errors
def update_job(
    job_id: str = typer.Argument(..., help="ID of the job to update."),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="New target URL."),
    schedule: Optional[str] = typer.Option(None, "--schedule", "-s", help="New cron schedule."),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="New request body."),
    body_file: Optional[Path] = typer.Option(
        None,
        "--body-file",
        help="Read the new request body from a file.",
        exists=True,
        dir_okay=False,
    ),
    secret: Optional[str] = typer.Option(None, "--secret", help="New bearer secret."),
    clear_body: bool = typer.Option(False, "--clear-body", help="Remove the request body."),
    clear_secret: bool = typer.Option(False, "--clear-secret", help="Remove the secret."),
) -> None:
    """Change fields of an existing job.

    A running daemon is told to apply the change at once.

    Example:
        cronpost jobs update ping --schedule "0 * * * *"
        cronpost jobs update ping --clear-secret
    """
    changes: dict = {}
    if url is not None:
        changes["url"] = url
    if schedule is not None:
        changes["schedule"] = schedule

    new_body = _read_body(body, body_file)
    if clear_body and new_body is not None:
        raise ValidationError("Use either --clear-body or a new body, not both")
    if clear_body or new_body is not None:
        changes["body"] = new_body

    if clear_secret and secret is not None:
        raise ValidationError("Use either --clear-secret or --secret, not both")
    if clear_secret or secret is not None:
        changes["secret"] = secret

    if not changes:
        raise ValidationError("Nothing to update. Pass at least one option.")

    job, changed = get_service().update_job(job_id, **changes)
    if changed:
        notify_daemon()

    if json_output():
        print_json({**job.to_dict(), "changed_fields": sorted(changed)})
        return

    if changed:
        print_result(True, f"Job updated: {job.id}", {"Changed": ", ".join(sorted(changed))}, console)
    else:
        console.print(f"[dim]Job {job.id} unchanged.[/dim]")


@app.command("delete")
@handle_errors
def delete_job(
    job_id: str = typer.Argument(..., help="ID of the job to delete."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete a job. Its execution logs are kept until cleared.

    Example:
        cronpost jobs delete ping
        cronpost jobs delete ping --force
    """
    service = get_service()
    job = service.get_job(job_id)

    if not force:
        confirm = typer.confirm(f"Delete job '{job.id}' ({job.url})?")
        if not confirm:
            raise typer.Abort()

    service.delete_job(job_id)
    notify_daemon()
    print_result(True, f"Job deleted: {job_id}", console_instance=console)


@app.command("pause")
@handle_errors
def pause_job(
    job_id: str = typer.Argument(..., help="ID of the job to pause."),
) -> None:
    """Stop a job from running without deleting it.

    Example:
        cronpost jobs pause ping
    """
    _, changed = get_service().set_active(job_id, False)
    if changed:
        notify_daemon()
        print_result(True, f"Job paused: {job_id}", console_instance=console)
    else:
        console.print(f"[dim]Job {job_id} is already paused.[/dim]")


@app.command("resume")
@handle_errors
def resume_job(
    job_id: str = typer.Argument(..., help="ID of the job to resume."),
) -> None:
    """Resume a paused job.

    Example:
        cronpost jobs resume ping
    """
    job, changed = get_service().set_active(job_id, True)
    if changed:
        notify_daemon()
        print_result(True, f"Job resumed: {job_id}", {
            "Next run": format_datetime(_next_run(job.schedule)),
        }, console)
    else:
        console.print(f"[dim]Job {job_id} is already active.[/dim]")


@app.command("run")
@handle_errors
def run_job(
    job_id: str = typer.Argument(..., help="ID of the job to run immediately."),
    no_log: bool = typer.Option(
        False,
        "--no-log",
        help="Do not store an execution record.",
    ),
) -> None:
    """Run a job once, right now, outside its schedule.

    The execution is recorded like a scheduled one unless --no-log is given.

    Example:
        cronpost jobs run ping
    """
    from cronpost.config import get_config
    from cronpost.scheduler.reconciler import execute_job
    from cronpost.scheduler.runner import ExecutionRunner
    from cronpost.scheduler.sinks import DatabaseLogSink, MemoryLogSink

    config = get_config()
    job = get_service().get_job(job_id)
    sink = MemoryLogSink() if no_log else DatabaseLogSink()

    async def execute():
        async with ExecutionRunner(
            timeout=config.http.timeout,
            http_errors_as_failures=config.http.http_errors_as_failures,
            user_agent=config.http.user_agent,
        ) as runner:
            return await execute_job(job, runner, sink)

    if not json_output():
        console.print(f"[bold]Running job:[/bold] {job.id} -> {job.url}")

    record = asyncio.run(execute())

    if json_output():
        print_json(record.to_dict())
    elif record.status.value == "success":
        print_result(True, "Job completed", {
            "Response": record.response_code,
            "Duration": format_duration_ms(record.duration_ms),
        }, console)
    else:
        print_result(False, f"Job failed: {record.error_message}", {
            "Duration": format_duration_ms(record.duration_ms),
        }, console)

    if record.status.value != "success":
        code = ExitCode.NETWORK_ERROR if record.response_code is None else ExitCode.GENERAL_ERROR
        raise typer.Exit(code=code)


@app.command("preview")
@handle_errors
def preview_schedule(
    schedule: str = typer.Argument(..., help="Cron schedule expression to check."),
    count: int = typer.Option(
        5,
        "--count",
        "-n",
        help="Number of fire times to show.",
        min=1,
        max=100,
    ),
) -> None:
    """Validate a schedule and show its next fire times.

    Example:
        cronpost jobs preview "*/15 9-17 * * 1-5"
        cronpost jobs preview "0 0 1 * *" --count 12
    """
    from cronpost.config import get_config
    from cronpost.scheduler.cron import describe_schedule, validate_schedule

    config = get_config()
    now = datetime.now(ZoneInfo(config.scheduler.timezone))
    parsed = validate_schedule(schedule, now=now, search_years=config.scheduler.search_years)
    fire_times = list(parsed.iter_fire_times(now, count))

    if json_output():
        print_json({
            "schedule": parsed.expression,
            "description": describe_schedule(parsed.expression),
            "next_runs": [t.isoformat() for t in fire_times],
        })
        return

    console.print(f"[green]✓[/green] {parsed.expression} ({describe_schedule(parsed.expression)})")
    for fire_time in fire_times:
        console.print(f"  {format_datetime(fire_time)}")
