"""Main CLI entry point for cronpost."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cronpost import __app_name__, __version__
from cronpost.cli import config, jobs, logs, run
from cronpost.cli.exit_codes import ExitCode
from cronpost.cli.output import set_json_output

app = typer.Typer(
    name=__app_name__,
    help="cronpost - Cron-scheduled HTTP POST jobs.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

app.add_typer(run.app, name="run")
app.add_typer(jobs.app, name="jobs")
app.add_typer(logs.app, name="logs")
app.add_typer(config.app, name="config")

# Libraries that log one line per firing or per request at INFO
CHATTY_LOGGERS = ("apscheduler", "httpx", "httpcore")

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d]: %(message)s"


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def console_log_level(verbose: bool, debug: bool, quiet: bool) -> int:
    """Map the global flags to the stderr log level."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    return logging.WARNING


def configure_logging(
    level: int,
    log_file: Optional[Path] = None,
    debug: bool = False,
) -> None:
    """Send cronpost logs to stderr at ``level`` and, if given, to ``log_file``.

    The log file always receives DEBUG records. Scheduler and HTTP library
    loggers stay at WARNING unless ``debug`` is set, so a busy daemon run
    with --verbose shows job results rather than every dispatch.
    """
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    handlers: list[logging.Handler] = [stderr_handler]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=DEBUG_LOG_FORMAT if debug else LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    library_level = logging.NOTSET if debug else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log job results and daemon activity (INFO).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log everything, including scheduler and HTTP library output (DEBUG).",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print command results as plain JSON.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write DEBUG logs to this file.",
    ),
) -> None:
    """cronpost - Fire HTTP POST requests on cron schedules.

    [bold]Core Commands:[/bold]

    • [cyan]run[/cyan] - Start the scheduler daemon
    • [cyan]jobs[/cyan] - Create, change and trigger scheduled jobs
    • [cyan]logs[/cyan] - Inspect execution history
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        cronpost jobs create ping --url https://example.com/hook --schedule "*/5 * * * *"
        cronpost jobs preview "0 9 * * 1-5"
        cronpost run
        cronpost --json logs list --job ping

    For more help on a specific command, use: [cyan]cronpost <command> --help[/cyan]
    """
    if quiet and (verbose or debug):
        flag = "--debug" if debug else "--verbose"
        console.print(f"[red]Error:[/red] --quiet and {flag} are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    set_json_output(as_json)
    configure_logging(console_log_level(verbose, debug, quiet), log_file=log_file, debug=debug)
    logging.getLogger(__name__).debug(f"cronpost v{__version__}, json output: {as_json}")


__all__ = ["app", "configure_logging", "console_log_level"]


if __name__ == "__main__":
    app()
