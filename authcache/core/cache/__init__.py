"""Two-tier authorization data cache.

A process-lifetime memory tier in front of a versioned durable tier, with
per-category TTLs and single-flight warming.
"""

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from authcache.core.cache.backends import (
    DiskCacheBackend,
    FilesystemBackend,
    MemoryBackend,
    PersistenceBackend,
    create_backend,
)
from authcache.core.cache.cache_manager import CacheManager
from authcache.core.cache.durable_store import DurableStore
from authcache.core.cache.loaders import Loader, call_loader, with_timeout
from authcache.core.cache.memory_store import MemoryStore
from authcache.core.cache.models import (
    MISSING,
    CacheCategory,
    CacheEntry,
    CacheKey,
    CacheStats,
)


if TYPE_CHECKING:
    from authcache.config.models import AuthCacheSettings
    from authcache.metrics.monitor import PerformanceMonitor


def create_durable_store(
    settings: "AuthCacheSettings",
    backend: PersistenceBackend | None = None,
    clock: Callable[[], float] = time.time,
) -> DurableStore:
    """Create the durable tier.

    Args:
        settings: Application settings
        backend: Persistence backend; built from ``settings.durable`` when omitted
        clock: Time source, seconds since the epoch

    Returns:
        Configured durable store
    """
    return DurableStore(
        backend=backend if backend is not None else create_backend(settings.durable),
        version=settings.cache.schema_version,
        eviction_fraction=settings.cache.quota_eviction_fraction,
        clock=clock,
    )


def create_cache_manager(
    settings: "AuthCacheSettings",
    backend: PersistenceBackend | None = None,
    clock: Callable[[], float] | None = None,
    monitor: "PerformanceMonitor | None" = None,
) -> CacheManager:
    """Create a two-tier cache manager from settings.

    Args:
        settings: Application settings
        backend: Persistence backend overriding ``settings.durable``
        clock: Time source shared by both tiers
        monitor: Optional performance monitor

    Returns:
        Configured cache manager
    """
    clock = clock or time.time
    memory = MemoryStore(
        max_entries=settings.cache.max_memory_entries,
        max_size_bytes=settings.cache.max_memory_bytes,
        clock=clock,
    )
    return CacheManager(
        memory=memory,
        durable=create_durable_store(settings, backend=backend, clock=clock),
        settings=settings.cache,
        monitor=monitor,
        clock=clock,
    )


def create_memory_cache_manager(
    max_entries: int | None = 1000,
    clock: Callable[[], float] = time.time,
) -> CacheManager:
    """Create a memory-only cache manager with default TTLs."""
    return CacheManager(MemoryStore(max_entries=max_entries, clock=clock), clock=clock)


__all__ = [
    "CacheManager",
    "MemoryStore",
    "DurableStore",
    "PersistenceBackend",
    "MemoryBackend",
    "FilesystemBackend",
    "DiskCacheBackend",
    "CacheCategory",
    "CacheEntry",
    "CacheKey",
    "CacheStats",
    "Loader",
    "MISSING",
    "call_loader",
    "with_timeout",
    "create_backend",
    "create_durable_store",
    "create_cache_manager",
    "create_memory_cache_manager",
]
