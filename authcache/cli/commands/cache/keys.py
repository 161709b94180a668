"""Cache keys CLI command."""

import time
from datetime import datetime
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from authcache.cli.decorators import handle_errors

from .utils import format_size_display, get_durable_store


console = Console()


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@handle_errors
def cache_keys(
    ctx: typer.Context,
    prefix: Annotated[
        str,
        typer.Option("--prefix", help="Only keys starting with this prefix"),
    ] = "",
    limit: Annotated[
        int | None,
        typer.Option("--limit", help="Limit number of keys displayed"),
    ] = None,
    metadata: Annotated[
        bool,
        typer.Option("--metadata", help="Include expiry, size and access count"),
    ] = False,
) -> None:
    """List keys stored in the durable tier.

    Examples:
        # Every permission entry of one user
        authcache cache keys --prefix permission:user1: --metadata
    """
    durable = get_durable_store(ctx)
    entries = sorted(
        (item for item in durable.entries() if item[0].startswith(prefix)),
        key=lambda item: item[0],
    )
    total = len(entries)
    if limit is not None:
        entries = entries[:limit]

    if not entries:
        console.print("[yellow]No cache keys found[/yellow]")
        return

    if not metadata:
        for key, _entry in entries:
            console.print(key, highlight=False, markup=False)
    else:
        now = time.time()
        table = Table(title="Durable cache keys")
        table.add_column("Key", style="cyan")
        table.add_column("Category")
        table.add_column("Expires")
        table.add_column("Status")
        table.add_column("Size", justify="right")
        table.add_column("Reads", justify="right")
        for key, entry in entries:
            status = "[yellow]expired[/yellow]" if entry.is_expired(now) else "[green]live[/green]"
            table.add_row(
                key,
                entry.category.value,
                _format_time(entry.expires_at),
                status,
                format_size_display(entry.size_bytes),
                str(entry.access_count),
            )
        console.print(table)

    if limit is not None and total > limit:
        console.print(f"[dim]Showing {limit} of {total} keys[/dim]")
