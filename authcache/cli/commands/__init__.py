"""CLI command modules."""

import typer

from authcache.cli.commands.cache import register_commands as register_cache_commands
from authcache.cli.commands.config import register_commands as register_config_commands


def register_all_commands(app: typer.Typer) -> None:
    """Register all CLI commands with the main app.

    Args:
        app: The main Typer app
    """
    registered = {group.name for group in app.registered_groups}
    if "cache" not in registered:
        register_cache_commands(app)
    if "config" not in registered:
        register_config_commands(app)
