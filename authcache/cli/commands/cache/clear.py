"""Cache clear and sweep CLI commands."""

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console

from authcache.cli.decorators import handle_errors

from .utils import get_durable_store


logger = logging.getLogger(__name__)
console = Console()


@handle_errors
def cache_clear(
    ctx: typer.Context,
    prefix: Annotated[
        str | None,
        typer.Option(
            "--prefix",
            help="Only clear keys starting with this prefix (e.g. 'role:user1')",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Force deletion without confirmation"),
    ] = False,
) -> None:
    """Remove entries from the durable tier.

    Without --prefix every entry is removed, including entries written under
    older schema versions.
    """
    durable = get_durable_store(ctx)
    target = f"keys starting with '{prefix}'" if prefix else "all cache entries"

    if not force:
        confirm = typer.confirm(f"Clear {target}?")
        if not confirm:
            console.print("[yellow]Cancelled[/yellow]")
            return

    if prefix:
        removed = asyncio.run(durable.clear(prefix))
    else:
        removed = asyncio.run(durable.clear(all_versions=True))

    logger.info("Cleared %d durable entries (%s)", removed, target)
    console.print(f"[green]Removed {removed} entries[/green]")


@handle_errors
def cache_sweep(ctx: typer.Context) -> None:
    """Remove expired, stale-version and corrupt entries from the durable tier."""
    durable = get_durable_store(ctx)
    removed = asyncio.run(durable.sweep())
    if removed:
        console.print(f"[green]Swept {removed} entries[/green]")
    else:
        console.print("[yellow]Nothing to sweep[/yellow]")
