"""Cache management CLI commands."""

import typer

from .clear import cache_clear, cache_sweep
from .keys import cache_keys
from .show import cache_show


cache_app = typer.Typer(
    name="cache",
    help="Durable cache inspection and maintenance",
    no_args_is_help=True,
)

cache_app.command(name="show")(cache_show)
cache_app.command(name="keys")(cache_keys)
cache_app.command(name="clear")(cache_clear)
cache_app.command(name="sweep")(cache_sweep)


def register_commands(app: typer.Typer) -> None:
    """Register cache commands with the main app.

    Args:
        app: The main Typer app
    """
    app.add_typer(cache_app, name="cache")
