"""Two-tier authorization cache with TTL expiry and single-flight warming."""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable
from functools import partial
from typing import TYPE_CHECKING, Any

from authcache.config.models import CacheSettings
from authcache.core.cache.durable_store import DurableStore
from authcache.core.cache.loaders import Loader, call_loader
from authcache.core.cache.memory_store import MemoryStore
from authcache.core.cache.models import CacheCategory, CacheEntry, CacheStats
from authcache.core.errors import DurableStoreError, LoaderError, LoaderTimeoutError


if TYPE_CHECKING:
    from authcache.metrics.monitor import PerformanceMonitor


logger = logging.getLogger(__name__)


class CacheManager:
    """Memory tier in front of a durable tier.

    Reads check memory, then the durable store; durable hits are promoted into
    memory. Writes always land in memory and are persisted best-effort: a full
    or failing durable tier degrades the cache to memory-only for that entry
    and is never reported to the caller.

    Values handed out are copies; cached state can only change through this
    class.
    """

    def __init__(
        self,
        memory: MemoryStore,
        durable: DurableStore | None = None,
        settings: CacheSettings | None = None,
        monitor: "PerformanceMonitor | None" = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache manager.

        Args:
            memory: In-memory LRU tier
            durable: Durable tier, or None for memory-only caching
            settings: Cache settings (TTLs, schema version, sweep interval)
            monitor: Optional performance monitor receiving hit/miss/eviction hooks
            clock: Time source, seconds since the epoch
        """
        self.settings = settings or CacheSettings()
        self.memory = memory
        self.durable = durable
        self.monitor = monitor
        self._clock = clock
        self.stats = CacheStats()

        self._inflight: dict[str, asyncio.Task[Any]] = {}
        # Loads whose key was invalidated after they started; their result is
        # returned to existing waiters but never cached or shared again.
        self._stale_flights: set[asyncio.Task[Any]] = set()
        # Bumped by every invalidation so a read suspended on the durable tier
        # does not promote an entry that was invalidated meanwhile.
        self._generation = 0
        self._last_sweep = clock()
        self._sweep_task: asyncio.Task[int] | None = None

    @property
    def version(self) -> int:
        return self.settings.schema_version

    def ttl_for(self, category: CacheCategory) -> float:
        return self.settings.ttl_for(category)

    async def get(self, key: str, default: Any = None) -> Any:
        """Retrieve a cached value.

        Args:
            key: Composite cache key
            default: Returned on a miss; pass ``MISSING`` when None is a valid value

        Returns:
            A copy of the cached value or ``default``
        """
        entry = await self._lookup(key)
        if entry is None:
            self._record_miss()
            return default

        self._record_hit()
        return entry.copy_value()

    async def contains(self, key: str) -> bool:
        """Check for a live entry without touching hit/miss statistics."""
        return await self._lookup(key) is not None

    async def set(
        self,
        key: str,
        value: Any,
        category: CacheCategory | str | None = None,
        ttl: float | None = None,
    ) -> None:
        """Store a value in both tiers.

        Args:
            key: Composite cache key
            value: JSON-serializable payload
            category: Entry category; derived from the key prefix when omitted
            ttl: Explicit time-to-live in seconds overriding the category TTL
        """
        resolved = self._resolve_category(key, category)
        ttl_seconds = ttl if ttl is not None else self.ttl_for(resolved)
        entry = CacheEntry.create(
            key=key,
            value=value,
            category=resolved,
            ttl_seconds=ttl_seconds,
            version=self.version,
            now=self._clock(),
        )

        self._store_in_memory(key, entry)
        self.stats.store_count += 1
        logger.debug(
            "Cached %s (category: %s, ttl: %s, size: %d bytes)",
            key,
            resolved.value,
            ttl_seconds,
            entry.size_bytes,
        )

        if self.durable is not None:
            try:
                if not await self.durable.set(key, entry):
                    self.stats.dropped_write_count += 1
            except DurableStoreError as e:
                self.stats.error_count += 1
                logger.warning("Durable write failed for %s, kept in memory: %s", key, e)

        self._maybe_sweep()

    async def invalidate(self, key: str) -> bool:
        """Remove a key from both tiers.

        Returns:
            True if an entry was removed from either tier
        """
        self._generation += 1
        self._mark_stale(key)

        removed = self.memory.delete(key)
        if self.durable is not None:
            try:
                removed = await self.durable.delete(key) or removed
            except DurableStoreError as e:
                self.stats.error_count += 1
                logger.warning("Durable delete failed for %s: %s", key, e)

        self.stats.invalidation_count += 1
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix`` from both tiers.

        Returns:
            Number of entries removed across both tiers
        """
        self._generation += 1
        for key in list(self._inflight):
            if key.startswith(prefix):
                self._mark_stale(key)

        removed = 0
        for key in self.memory.keys():
            if key.startswith(prefix) and self.memory.delete(key):
                removed += 1

        if self.durable is not None:
            try:
                removed += await self.durable.clear(prefix)
            except DurableStoreError as e:
                self.stats.error_count += 1
                logger.warning("Durable prefix clear failed for %s: %s", prefix, e)

        self.stats.invalidation_count += 1
        logger.debug("Invalidated %d entries with prefix %s", removed, prefix)
        return removed

    async def invalidate_user(self, user_id: str) -> int:
        """Remove every cached entry belonging to one user, in all categories."""
        removed = 0
        for category in CacheCategory:
            if await self.invalidate(f"{category.value}:{user_id}"):
                removed += 1
            removed += await self.invalidate_prefix(f"{category.value}:{user_id}:")
        return removed

    async def clear(self) -> None:
        """Remove every entry, including durable entries of older schema versions."""
        self._generation += 1
        for key in list(self._inflight):
            self._mark_stale(key)
        self.memory.clear()
        if self.durable is not None:
            try:
                await self.durable.clear(all_versions=True)
            except DurableStoreError as e:
                self.stats.error_count += 1
                logger.warning("Durable clear failed: %s", e)
        self.stats.invalidation_count += 1

    async def warm(
        self,
        key: str,
        loader: Loader,
        category: CacheCategory | str | None = None,
        speculative: bool = False,
    ) -> Any:
        """Return the cached value, loading it once if absent.

        Concurrent calls for the same key share one load: the first call starts
        it and every caller awaits the same task. Cancelling one caller does not
        cancel the shared load. A call made after the key was invalidated never
        joins a load started before the invalidation; it starts a fresh one.

        Args:
            key: Composite cache key
            loader: Zero-argument callable returning the value or an awaitable of it
            category: Entry category; derived from the key prefix when omitted
            speculative: Prefetch on behalf of a predicted navigation; the lookup
                is counted as a prefetch instead of a hit or miss

        Returns:
            The cached or freshly loaded value

        Raises:
            LoaderError: If the loader failed; nothing is cached and the next
                call retries
        """
        task = self._inflight.get(key)
        if task is None or task.done() or task in self._stale_flights:
            task = asyncio.get_running_loop().create_task(
                self._load(key, loader, category, speculative), name=f"authcache-warm:{key}"
            )
            self._inflight[key] = task
            task.add_done_callback(partial(self._release_flight, key))
        else:
            logger.debug("Joining in-flight load for %s", key)

        return await asyncio.shield(task)

    def in_flight_keys(self) -> list[str]:
        return [key for key, task in self._inflight.items() if not task.done()]

    async def sweep(self) -> int:
        """Reclaim expired entries in both tiers and stale durable versions.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for key, entry in self.memory.items():
            if not entry.is_valid(now, self.version) and self.memory.delete(key):
                removed += 1

        if self.durable is not None:
            try:
                removed += await self.durable.sweep()
            except DurableStoreError as e:
                self.stats.error_count += 1
                logger.warning("Durable sweep failed: %s", e)

        self._last_sweep = now
        logger.debug("Cache sweep removed %d entries", removed)
        return removed

    def get_stats(self) -> CacheStats:
        """Get a snapshot of cache statistics."""
        return dataclasses.replace(
            self.stats,
            memory_entries=len(self.memory),
            memory_size_bytes=self.memory.size_bytes,
        )

    def get_cache_efficiency(self) -> float:
        """Hit rate as a percentage."""
        return self.stats.hit_rate

    async def close(self) -> None:
        """Stop the background sweep, if one is running."""
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    async def _lookup(self, key: str) -> CacheEntry | None:
        now = self._clock()
        entry = self.memory.get(key)
        if entry is not None:
            if entry.is_valid(now, self.version):
                self.stats.memory_hit_count += 1
                return entry
            self.memory.delete(key)

        if self.durable is None:
            return None

        generation = self._generation
        try:
            entry = await self.durable.get(key)
        except DurableStoreError as e:
            self.stats.error_count += 1
            logger.warning("Durable read failed for %s: %s", key, e)
            return None

        if entry is None or not entry.is_valid(self._clock(), self.version):
            return None

        if generation != self._generation:
            logger.debug("Discarding durable read of %s invalidated meanwhile", key)
            return None

        # A write may have landed in memory while the durable read was suspended
        current = self.memory.peek(key)
        if (
            current is not None
            and current.is_valid(self._clock(), self.version)
            and current.created_at >= entry.created_at
        ):
            return current

        self._store_in_memory(key, entry)
        self.stats.durable_hit_count += 1
        logger.debug("Promoted %s from durable tier", key)
        return entry

    async def _load(
        self,
        key: str,
        loader: Loader,
        category: CacheCategory | str | None,
        speculative: bool,
    ) -> Any:
        entry = await self._lookup(key)
        if speculative:
            self.stats.prefetch_lookup_count += 1
        elif entry is not None:
            self._record_hit()
        else:
            self._record_miss()
        if entry is not None:
            return entry.copy_value()

        try:
            value = await call_loader(loader)
        except (asyncio.TimeoutError, TimeoutError) as e:
            self.stats.error_count += 1
            raise LoaderTimeoutError(key, f"Loader for {key} timed out") from e
        except Exception as e:
            self.stats.error_count += 1
            raise LoaderError(key, f"Loader for {key} failed: {e}") from e

        if asyncio.current_task() in self._stale_flights:
            logger.debug("Not caching %s, invalidated while loading", key)
            return value

        await self.set(key, value, category)
        return value

    def _mark_stale(self, key: str) -> None:
        task = self._inflight.get(key)
        if task is not None and not task.done():
            self._stale_flights.add(task)

    def _release_flight(self, key: str, task: asyncio.Task[Any]) -> None:
        self._stale_flights.discard(task)
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the failure as retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def _store_in_memory(self, key: str, entry: CacheEntry) -> None:
        evicted = self.memory.set(key, entry)
        if evicted:
            self.stats.eviction_count += len(evicted)
            if self.monitor is not None:
                self.monitor.record_evictions(len(evicted))

    def _resolve_category(
        self, key: str, category: CacheCategory | str | None
    ) -> CacheCategory:
        if category is None:
            return CacheCategory.from_key(key)
        return CacheCategory(category)

    def _record_hit(self) -> None:
        self.stats.hit_count += 1
        if self.monitor is not None:
            self.monitor.record_hit()

    def _record_miss(self) -> None:
        self.stats.miss_count += 1
        if self.monitor is not None:
            self.monitor.record_miss()

    def _maybe_sweep(self) -> None:
        """Schedule a background sweep once the sweep interval has elapsed."""
        interval = self.settings.sweep_interval_seconds
        if not interval:
            return
        now = self._clock()
        if now - self._last_sweep < interval:
            return
        if self._sweep_task is not None and not self._sweep_task.done():
            return

        self._last_sweep = now
        self._sweep_task = asyncio.get_running_loop().create_task(
            self.sweep(), name="authcache-sweep"
        )
