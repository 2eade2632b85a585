"""cronpost run command - Start the scheduler daemon."""

import asyncio
import logging
import signal
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cronpost.cli.error_handler import DaemonError, handle_errors
from cronpost.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the cronpost scheduler daemon.")
console = Console()

logger = logging.getLogger(__name__)


def _load(config_file: Optional[Path]):
    from cronpost.config import load_config, set_config

    config = load_config(config_file)
    set_config(config)
    return config


def _setup_daemon_logging(config, verbose: bool) -> None:
    """Attach the configured log file and level to the root logger.

    Runs after the global CLI options have configured console logging, so
    handlers are added rather than replacing what is there.
    """
    root = logging.getLogger()
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level, logging.INFO)
    root.setLevel(level)

    for handler in root.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)

    if config.logging.file:
        config.logging.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.logging.file)
        file_handler.setFormatter(logging.Formatter(config.logging.format))
        file_handler.setLevel(level)
        root.addHandler(file_handler)


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Start the scheduler daemon in the foreground.

    The daemon schedules every active job, fires their HTTP requests,
    records each execution and re-reads the job store every
    scheduler.check_interval seconds. Stop it with Ctrl+C,
    SIGTERM or `cronpost run stop`.

    Example:
        cronpost run
        cronpost run --config ./cronpost.toml --verbose
    """
    if ctx.invoked_subcommand is not None:
        return

    from cronpost.config import ensure_directories
    from cronpost.daemon.pid import PIDFile
    from cronpost.daemon.service import run_daemon

    config = _load(config_file)
    ensure_directories(config)

    pid_file = PIDFile(config.pid_file)
    if pid_file.clear_if_stale():
        console.print("[dim]Removed stale PID file[/dim]")

    _setup_daemon_logging(config, verbose)

    with pid_file:
        console.print(f"[bold green]Starting cronpost daemon...[/bold green] (PID file: {pid_file.path})")
        if verbose:
            console.print(f"  Database: {config.database_url}")
            console.print(f"  Timezone: {config.scheduler.timezone}")
            console.print(f"  Sync interval: {config.scheduler.check_interval}s")
        try:
            asyncio.run(run_daemon(config))
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")

    console.print("[green]Daemon stopped[/green]")


@app.command()
@handle_errors
def status(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Check daemon status.

    Shows whether the daemon is running and its PID if available.

    Example:
        cronpost run status
    """
    from cronpost.daemon.pid import PIDFile
    from cronpost.cli.output import json_output, print_json

    config = _load(config_file)
    pid_file = PIDFile(config.pid_file)
    pid = pid_file.get_pid()
    stale = pid is None and pid_file.clear_if_stale()

    if json_output():
        print_json({
            "running": pid is not None,
            "pid": pid,
            "pid_file": str(pid_file.path),
            "database_url": config.database_url,
        })
        return

    if pid is not None:
        console.print(f"[green]● Daemon is running[/green] (PID: {pid})")
        console.print(f"  Data directory: {config.data_dir}")
        console.print(f"  Database: {config.database_url}")
    else:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if stale:
            console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
@handle_errors
def stop(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force kill the daemon (SIGKILL).",
    ),
    wait: float = typer.Option(
        0.0,
        "--wait",
        "-w",
        help="Seconds to wait for the daemon to exit.",
        min=0.0,
    ),
) -> None:
    """Stop the daemon.

    Sends SIGTERM for a graceful shutdown, or SIGKILL with --force.

    Example:
        cronpost run stop
        cronpost run stop --wait 10
        cronpost run stop --force
    """
    from cronpost.daemon.pid import PIDFile

    config = _load(config_file)
    pid_file = PIDFile(config.pid_file)

    if pid_file.clear_if_stale():
        console.print("[yellow]Daemon is not running (removed stale PID file)[/yellow]")
        raise typer.Exit(code=ExitCode.DAEMON_ERROR)

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        pid = pid_file.send_signal(sig)
    except PermissionError as e:
        raise DaemonError(
            f"Permission denied: cannot signal daemon process ({e})",
            exit_code=ExitCode.PERMISSION_DENIED,
        ) from e

    if pid is None:
        raise DaemonError("Daemon is not running")

    if force:
        pid_file.remove()
        console.print(f"[red]Force killed daemon (PID: {pid})[/red]")
        return

    console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")

    deadline = time.monotonic() + wait
    while wait and time.monotonic() < deadline:
        if not pid_file.is_running():
            console.print("[green]Daemon stopped[/green]")
            return
        time.sleep(0.2)

    if wait:
        raise DaemonError(f"Daemon still running after {wait:g}s (PID: {pid})")
