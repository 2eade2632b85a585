"""cronpost config command - Configuration management."""

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from cronpost.cli.error_handler import ConfigurationError, handle_errors
from cronpost.cli.exit_codes import ExitCode
from cronpost.cli.output import json_output, print_json

app = typer.Typer(help="Manage cronpost configuration.")
console = Console()


def _config_path() -> Path:
    from cronpost.config import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE, ENV_PREFIX

    config_dir = Path(os.environ.get(f"{ENV_PREFIX}CONFIG_DIR", DEFAULT_CONFIG_DIR))
    return config_dir / DEFAULT_CONFIG_FILE


@app.command("show")
@handle_errors
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (scheduler, http, keepalive, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show credentials embedded in URLs.",
    ),
) -> None:
    """Show current configuration.

    Example:
        cronpost config show
        cronpost config show scheduler
        cronpost config show --format yaml
    """
    from cronpost.config import config_to_dict, export_config_json, export_config_yaml, get_config

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config, mask_secrets=not unmask), "yaml", theme="monokai"))
        return
    if format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return
    if format != "table":
        raise ConfigurationError(
            f"Unknown format '{format}'. Choose from: table, yaml, json",
            exit_code=ExitCode.INVALID_ARGUMENT,
        )

    data = config_to_dict(config, mask_secrets=not unmask)
    sections = {
        "paths": {k: data[k] for k in ("config_dir", "data_dir", "database_url")},
        "scheduler": data["scheduler"],
        "http": data["http"],
        "keepalive": data["keepalive"],
        "logging": data["logging"],
    }

    if section and section not in sections:
        raise ConfigurationError(
            f"Unknown section: {section}",
            exit_code=ExitCode.INVALID_ARGUMENT,
            details={"sections": ", ".join(sections)},
        )

    if json_output():
        print_json(sections[section] if section else sections)
        return

    for name in [section] if section else sections:
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in sections[name].items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)
        console.print()


@app.command("set")
@handle_errors
def set_config(
    key: str = typer.Argument(
        ...,
        help="Configuration key (format: section.key, e.g., scheduler.timezone).",
    ),
    value: str = typer.Argument(
        ...,
        help="Value to set.",
    ),
) -> None:
    """Set a configuration value.

    Example:
        cronpost config set scheduler.timezone Europe/Berlin
        cronpost config set http.timeout 10
        cronpost config set http.http_errors_as_failures true
    """
    from cronpost.config import clear_config_cache, set_config_value

    if "." not in key:
        raise ConfigurationError("Key must be in format: section.key", exit_code=ExitCode.INVALID_ARGUMENT)

    section, config_key = key.split(".", 1)
    try:
        set_config_value(section, config_key, value, _config_path())
    except ValueError as e:
        raise ConfigurationError(str(e), exit_code=ExitCode.INVALID_ARGUMENT) from e

    clear_config_cache()
    console.print(f"[green]✓[/green] Set {section}.{config_key} = {value}")


@app.command("init")
@handle_errors
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        False,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Prompt for the most common settings.",
    ),
) -> None:
    """Write a configuration file with default values.

    Example:
        cronpost config init
        cronpost config init --interactive
        cronpost config init --force
    """
    from cronpost.config import CronpostConfig, ENV_PREFIX, ensure_directories, save_config

    config_path = _config_path()
    if config_path.exists() and not force:
        raise ConfigurationError(
            f"Configuration already exists at {config_path}. Use --force to overwrite",
            exit_code=ExitCode.ALREADY_EXISTS,
        )

    config = CronpostConfig(config_dir=config_path.parent)
    if env_data_dir := os.environ.get(f"{ENV_PREFIX}DATA_DIR"):
        config = CronpostConfig(config_dir=config_path.parent, data_dir=Path(env_data_dir))

    if interactive:
        console.print("[bold cyan]Scheduler[/bold cyan]")
        config.scheduler.timezone = typer.prompt("  Timezone", default=config.scheduler.timezone)
        config.scheduler.check_interval = int(typer.prompt(
            "  Seconds between job store syncs",
            default=str(config.scheduler.check_interval),
        ))

        console.print("[bold cyan]HTTP[/bold cyan]")
        config.http.timeout = float(typer.prompt("  Request timeout (s)", default=str(config.http.timeout)))
        config.http.http_errors_as_failures = typer.confirm(
            "  Record non-2xx responses as failures?",
            default=config.http.http_errors_as_failures,
        )

        console.print("[bold cyan]Keep-alive[/bold cyan]")
        url = typer.prompt("  Keep-alive URL (press Enter to disable)", default="")
        if url:
            config.keepalive.enabled = True
            config.keepalive.url = url

    ensure_directories(config)
    save_config(config, config_path)
    config_path.chmod(0o600)

    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        cronpost config path
    """
    path = _config_path()
    console.print(f"[bold]Config directory:[/bold] {path.parent}")
    console.print(f"[bold]Config file:[/bold] {path}")
    console.print(f"[bold]Exists:[/bold] {path.exists()}")


@app.command("validate")
@handle_errors
def validate_config() -> None:
    """Validate current configuration.

    Exits with code 2 if any error is found; warnings alone pass.

    Example:
        cronpost config validate
    """
    from cronpost.config import get_config, validate_config as do_validate

    issues = do_validate(get_config())
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in errors:
        console.print(f"[red]✗[/red] {issue.field}: {issue.message}")
    for issue in warnings:
        console.print(f"[yellow]![/yellow] {issue.field}: {issue.message}")

    if errors:
        raise ConfigurationError(f"Configuration has {len(errors)} error(s)")

    console.print(f"[green]✓[/green] Configuration is valid ({len(warnings)} warning(s))")
