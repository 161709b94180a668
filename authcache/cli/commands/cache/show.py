"""Cache show CLI command."""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from authcache.cli.decorators import handle_errors

from .utils import format_size_display, get_durable_store, summarize_entries


logger = logging.getLogger(__name__)
console = Console()


@handle_errors
def cache_show(
    ctx: typer.Context,
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: text or json"),
    ] = "text",
) -> None:
    """Summarize the durable tier per category.

    Shows live and expired entries of the current schema version, entries left
    behind by older versions, and quota usage.
    """
    settings = ctx.obj.settings
    durable = get_durable_store(ctx)
    summary = summarize_entries(durable)
    stale = len(durable.stale_keys())
    usage = durable.backend.usage_bytes()
    quota = settings.durable.quota_bytes

    if output_format == "json":
        console.print_json(
            data={
                "backend": settings.durable.backend,
                "schema_version": durable.version,
                "categories": {
                    category.value: {
                        "live": item.live,
                        "expired": item.expired,
                        "size_bytes": item.size_bytes,
                    }
                    for category, item in summary.items()
                },
                "stale_entries": stale,
                "usage_bytes": usage,
                "quota_bytes": quota,
            }
        )
        return

    if settings.durable.backend == "memory":
        console.print(
            "[yellow]Durable backend is 'memory'; entries only exist inside a "
            "running application[/yellow]"
        )

    table = Table(title=f"Durable cache (schema v{durable.version})")
    table.add_column("Category", style="cyan")
    table.add_column("Live", justify="right", style="green")
    table.add_column("Expired", justify="right", style="yellow")
    table.add_column("Size", justify="right")
    table.add_column("TTL", justify="right", style="dim")

    for category, item in summary.items():
        table.add_row(
            category.value,
            str(item.live),
            str(item.expired),
            format_size_display(item.size_bytes),
            f"{settings.cache.ttl_for(category):g}s",
        )
    console.print(table)

    console.print(f"Stale-version entries: {stale}")
    quota_display = format_size_display(quota) if quota else "unbounded"
    console.print(f"Usage: {format_size_display(usage)} of {quota_display}")
