"""Configuration CLI commands."""

import json
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from authcache.cli.decorators import handle_errors
from authcache.config.loader import default_config_paths


console = Console()

config_app = typer.Typer(
    name="config",
    help="Configuration inspection commands",
    no_args_is_help=True,
)


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{name}."))
        else:
            rows.append((name, value))
    return rows


@config_app.command(name="show")
@handle_errors
def show_config(
    ctx: typer.Context,
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: text, json or yaml"),
    ] = "text",
) -> None:
    """Show the effective configuration (file, environment and defaults)."""
    settings = ctx.obj.settings
    data = settings.model_dump(mode="json")

    if output_format == "json":
        console.print_json(json.dumps(data))
        return
    if output_format == "yaml":
        print(yaml.safe_dump(data, sort_keys=False), end="")
        return

    table = Table(title="authcache configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in _flatten(data):
        table.add_row(name, "null" if value is None else str(value))
    console.print(table)

    source = ctx.obj.config_file or next(
        (str(p) for p in default_config_paths() if p.is_file()), "defaults"
    )
    console.print(f"[dim]Source: {source} (environment variables AUTHCACHE_* override)[/dim]")


def register_commands(app: typer.Typer) -> None:
    """Register config commands with the main app.

    Args:
        app: The main Typer app
    """
    app.add_typer(config_app, name="config")
