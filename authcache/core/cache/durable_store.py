"""Versioned durable cache tier on top of a persistence backend."""

import asyncio
import logging
import math
import re
import time
from collections.abc import Callable

from authcache.core.cache.backends import PersistenceBackend
from authcache.core.cache.models import CacheEntry
from authcache.core.errors import DurableStoreError, QuotaExceededError


logger = logging.getLogger(__name__)

_VERSIONED_KEY = re.compile(r"^v\d+:")


class DurableStore:
    """Durable tier storing serialized ``CacheEntry`` documents.

    Every storage key is prefixed with the schema version (``v2:permission:...``).
    Entries written under another version are never read; they are treated as
    absent, removed when met, and reclaimed by ``sweep``.

    All operations are coroutines and yield to the event loop once before
    touching the backend, so callers see a uniform asynchronous contract
    whatever the backend does underneath.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        version: int = 2,
        eviction_fraction: float = 0.2,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize durable store.

        Args:
            backend: Key-value persistence backend
            version: Current schema version
            eviction_fraction: Share of entries removed when the quota is hit
            clock: Time source, seconds since the epoch
        """
        self.backend = backend
        self.version = version
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self.quota_eviction_count = 0
        self.dropped_write_count = 0

    @property
    def prefix(self) -> str:
        return f"v{self.version}:"

    def storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> CacheEntry | None:
        """Load an entry, or None when absent, stale, expired or corrupt.

        Raises:
            DurableStoreError: If the backend failed
        """
        await asyncio.sleep(0)
        storage_key = self.storage_key(key)
        raw = self.backend.get(storage_key)
        if raw is None:
            return None

        entry = self._parse(storage_key, raw)
        if entry is None:
            return None

        now = self._clock()
        if entry.version != self.version or entry.key != key:
            logger.debug("Dropping durable entry %s with stale version", key)
            self.backend.delete(storage_key)
            return None

        if entry.is_expired(now):
            logger.debug("Dropping expired durable entry %s", key)
            self.backend.delete(storage_key)
            return None

        entry.touch(now)
        try:
            self.backend.set(storage_key, entry.to_json())
        except DurableStoreError as e:
            logger.debug("Could not refresh access time for %s: %s", key, e)

        return entry

    async def set(self, key: str, entry: CacheEntry) -> bool:
        """Persist an entry.

        On a quota error the oldest entries are evicted and the write is
        retried once; if that fails too the write is dropped.

        Returns:
            True if the entry was written, False if it was dropped

        Raises:
            DurableStoreError: If the backend failed for a reason other than quota
        """
        await asyncio.sleep(0)
        storage_key = self.storage_key(key)
        payload = entry.to_json()

        try:
            self.backend.set(storage_key, payload)
            return True
        except QuotaExceededError as e:
            logger.warning(
                "Durable quota exceeded writing %s (%s), evicting oldest entries",
                key,
                e,
            )

        removed = self._evict_for_quota()
        self.quota_eviction_count += removed

        try:
            self.backend.set(storage_key, payload)
            return True
        except QuotaExceededError:
            self.dropped_write_count += 1
            logger.warning(
                "Dropping durable write for %s after evicting %d entries",
                key,
                removed,
            )
            return False

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        return self.backend.delete(self.storage_key(key))

    async def clear(self, prefix: str = "", all_versions: bool = False) -> int:
        """Remove current-version entries whose key starts with ``prefix``.

        Args:
            prefix: Cache key prefix, e.g. ``permission:user1:``
            all_versions: Also remove every entry written under other versions

        Returns:
            Number of entries removed
        """
        await asyncio.sleep(0)
        target = self.storage_key(prefix)
        removed = 0
        for storage_key in self.backend.keys():
            if storage_key.startswith(target) or (
                all_versions and _VERSIONED_KEY.match(storage_key)
            ):
                if self.backend.delete(storage_key):
                    removed += 1
        return removed

    async def sweep(self) -> int:
        """Remove expired, stale-version and corrupt entries.

        Returns:
            Number of entries removed
        """
        await asyncio.sleep(0)
        now = self._clock()
        removed = 0

        for storage_key in self.stale_keys():
            if self.backend.delete(storage_key):
                removed += 1

        for storage_key in self._current_keys():
            raw = self.backend.get(storage_key)
            if raw is None:
                continue
            entry = self._parse(storage_key, raw)
            if entry is None:
                removed += 1
            elif entry.version != self.version or entry.is_expired(now):
                if self.backend.delete(storage_key):
                    removed += 1

        if removed:
            logger.debug("Durable sweep removed %d entries", removed)
        return removed

    def entries(self) -> list[tuple[str, CacheEntry]]:
        """Current-version entries keyed by cache key, including expired ones."""
        result = []
        for storage_key in self._current_keys():
            raw = self.backend.get(storage_key)
            if raw is None:
                continue
            try:
                entry = CacheEntry.from_json(raw)
            except ValueError:
                continue
            result.append((storage_key[len(self.prefix) :], entry))
        return result

    def stale_keys(self) -> list[str]:
        """Storage keys written under another schema version."""
        return [
            key
            for key in self.backend.keys()
            if _VERSIONED_KEY.match(key) and not key.startswith(self.prefix)
        ]

    def _current_keys(self) -> list[str]:
        return [key for key in self.backend.keys() if key.startswith(self.prefix)]

    def _parse(self, storage_key: str, raw: str) -> CacheEntry | None:
        try:
            return CacheEntry.from_json(raw)
        except ValueError as e:
            logger.warning("Removing corrupt durable entry %s: %s", storage_key, e)
            self.backend.delete(storage_key)
            return None

    def _evict_for_quota(self) -> int:
        """Free space: every stale-version key plus the oldest share of entries."""
        removed = 0
        for storage_key in self.stale_keys():
            if self.backend.delete(storage_key):
                removed += 1

        candidates: list[tuple[str, CacheEntry]] = []
        for storage_key in self._current_keys():
            raw = self.backend.get(storage_key)
            if raw is None:
                continue
            entry = self._parse(storage_key, raw)
            if entry is None:
                removed += 1
                continue
            candidates.append((storage_key, entry))

        if not candidates:
            return removed

        candidates.sort(
            key=lambda item: (
                item[1].last_accessed_at,
                item[1].category.eviction_priority,
            )
        )
        to_remove = max(1, math.ceil(len(candidates) * self.eviction_fraction))
        for storage_key, _entry in candidates[:to_remove]:
            if self.backend.delete(storage_key):
                removed += 1

        logger.info("Quota eviction removed %d durable entries", removed)
        return removed
