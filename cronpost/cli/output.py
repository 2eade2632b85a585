"""Output formatting helpers for cronpost commands."""

import json
from datetime import datetime
from typing import Any, Dict, Optional

import typer
from rich.console import Console

console = Console()

# Set from the global --json flag
_json_output = False


def set_json_output(enabled: bool) -> None:
    global _json_output
    _json_output = enabled


def json_output() -> bool:
    """Check whether commands should print plain JSON instead of Rich output."""
    return _json_output


def print_json(data: Any) -> None:
    """Print data as JSON on stdout.

    Written without Rich so the output stays parseable regardless of
    terminal width.
    """
    typer.echo(json.dumps(data, indent=2, default=str))


def print_result(
    success: bool,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    console_instance: Optional[Console] = None,
) -> None:
    """Print a ✓/✗ line followed by indented key/value details.

    Example:
        print_result(True, "Job created: nightly", {"Next run": "2024-01-02 00:00"})
    """
    out = console_instance or console
    icon = "[green]✓[/green]" if success else "[red]✗[/red]"
    out.print(f"{icon} {message}")
    for key, value in (details or {}).items():
        out.print(f"  {key}: {value}")


def format_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_duration_ms(duration_ms: int) -> str:
    """Format milliseconds for humans.

    Example:
        format_duration_ms(850)    # "850ms"
        format_duration_ms(12500)  # "12.5s"
    """
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    return f"{duration_ms / 1000:.1f}s"
