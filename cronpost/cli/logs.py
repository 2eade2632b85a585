"""cronpost logs command - Inspect and prune execution records."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from cronpost.cli.error_handler import handle_errors
from cronpost.cli.jobs import get_service
from cronpost.cli.output import format_datetime, format_duration_ms, json_output, print_json, print_result

app = typer.Typer(help="Inspect job execution logs.")
console = Console()


@app.command("list")
@handle_errors
def list_logs(
    job_id: Optional[str] = typer.Option(
        None,
        "--job",
        "-j",
        help="Only show executions of this job.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of records to show.",
        min=1,
        max=1000,
    ),
    failed: bool = typer.Option(
        False,
        "--failed",
        help="Only show failed executions.",
    ),
) -> None:
    """Show recent executions, newest first.

    Example:
        cronpost logs list
        cronpost logs list --job ping --limit 50
    """
    service = get_service()
    if job_id is not None:
        # Raises JobNotFoundError for unknown ids rather than printing nothing
        service.get_job(job_id)

    records = service.get_logs(job_id=job_id, limit=limit)
    if failed:
        records = [r for r in records if r.status.value == "error"]

    if json_output():
        print_json([r.to_dict() for r in records])
        return

    if not records:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(title="Executions")
    table.add_column("Time")
    table.add_column("Job", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Code", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Error", style="dim")

    for record in records:
        status = "[green]success[/green]" if record.status.value == "success" else "[red]error[/red]"
        table.add_row(
            format_datetime(record.timestamp),
            record.job_id,
            status,
            str(record.response_code) if record.response_code is not None else "-",
            format_duration_ms(record.duration_ms),
            record.error_message or "",
        )

    console.print(table)


@app.command("clear")
@handle_errors
def clear_logs(
    days: int = typer.Option(
        30,
        "--days",
        "-d",
        help="Delete records older than this many days.",
        min=0,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete old execution records.

    Example:
        cronpost logs clear
        cronpost logs clear --days 7 --force
    """
    if not force:
        confirm = typer.confirm(f"Delete execution records older than {days} days?")
        if not confirm:
            raise typer.Abort()

    deleted = get_service().clear_old_logs(days=days)

    if json_output():
        print_json({"deleted": deleted, "days": days})
        return

    print_result(True, f"Deleted {deleted} execution records older than {days} days", console_instance=console)


@app.command("stats")
@handle_errors
def show_stats() -> None:
    """Show job counts and today's success rate (UTC day).

    Example:
        cronpost logs stats
    """
    stats = get_service().get_stats()

    if json_output():
        print_json(stats.to_dict())
        return

    table = Table(title="cronpost Stats", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total jobs", str(stats.total_jobs))
    table.add_row("Active jobs", str(stats.active_jobs))
    table.add_row("Executions today", str(stats.executions_today))
    table.add_row("Success rate", f"{stats.success_rate:.1f}%")
    console.print(table)


@app.command("health")
@handle_errors
def show_health() -> None:
    """Check that the job store is reachable.

    Example:
        cronpost logs health
    """
    health = get_service().get_health()

    if json_output():
        print_json(health.to_dict())
        return

    console.print(f"[green]● {health.status}[/green] ({health.active_jobs} active jobs)")
