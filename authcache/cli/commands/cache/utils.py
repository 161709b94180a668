"""Shared helpers for cache CLI commands."""

import time
from dataclasses import dataclass

import typer

from authcache.core.cache import create_durable_store
from authcache.core.cache.durable_store import DurableStore
from authcache.core.cache.models import CacheCategory


def format_size_display(bytes_count: int) -> str:
    """Format byte count to human-readable string."""
    if bytes_count < 0:
        return "0 B"

    count = float(bytes_count)
    for unit in ["B", "KB", "MB", "GB"]:
        if count < 1024.0 or unit == "GB":
            return f"{count:.1f} {unit}" if unit != "B" else f"{int(count)} B"
        count /= 1024.0
    return f"{count:.1f} GB"


def get_durable_store(ctx: typer.Context) -> DurableStore:
    """Open the durable tier described by the CLI's configuration."""
    settings = ctx.obj.settings
    return create_durable_store(settings)


@dataclass
class CategorySummary:
    """Durable entries of one category split by liveness."""

    live: int = 0
    expired: int = 0
    size_bytes: int = 0


def summarize_entries(
    durable: DurableStore, now: float | None = None
) -> dict[CacheCategory, CategorySummary]:
    """Count live and expired current-version entries per category."""
    now = time.time() if now is None else now
    summary = {category: CategorySummary() for category in CacheCategory}
    for _key, entry in durable.entries():
        item = summary[entry.category]
        if entry.is_expired(now):
            item.expired += 1
        else:
            item.live += 1
        item.size_bytes += entry.size_bytes
    return summary
