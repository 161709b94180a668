"""In-memory LRU tier."""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from authcache.core.cache.models import CacheEntry


logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-lifetime key to entry map kept in LRU order.

    The least recently accessed entry sits at the front of the underlying
    ``OrderedDict``; ``get`` and ``set`` move an entry to the back. Reads never
    raise: an absent key returns ``None``.

    Expiry is not checked here. The cache manager validates entries it reads.
    """

    def __init__(
        self,
        max_entries: int | None = 1000,
        max_size_bytes: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize memory store.

        Args:
            max_entries: Maximum number of entries before LRU eviction
            max_size_bytes: Maximum estimated payload size before LRU eviction
            clock: Time source, seconds since the epoch
        """
        self.max_entries = max_entries
        self.max_size_bytes = max_size_bytes
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._size_bytes = 0
        self.eviction_count = 0
        logger.debug(
            "Initialized memory store (max_entries=%s, max_size_bytes=%s)",
            max_entries,
            max_size_bytes,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    def get(self, key: str) -> CacheEntry | None:
        """Return the entry and mark it most recently used."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        entry.touch(self._clock())
        self._entries.move_to_end(key)
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the entry without refreshing its LRU position."""
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> list[str]:
        """Store an entry as most recently used.

        Returns:
            Keys evicted to bring the store back under budget
        """
        old_entry = self._entries.pop(key, None)
        if old_entry is not None:
            self._size_bytes -= old_entry.size_bytes

        self._entries[key] = entry
        self._size_bytes += entry.size_bytes

        return self._enforce_budget(protect=key)

    def delete(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._size_bytes -= entry.size_bytes
        return True

    def evict_lru(self, count: int) -> list[str]:
        """Remove the ``count`` least recently accessed entries.

        Returns:
            The evicted keys, oldest first
        """
        evicted: list[str] = []
        while self._entries and len(evicted) < count:
            key, entry = self._entries.popitem(last=False)
            self._size_bytes -= entry.size_bytes
            evicted.append(key)

        if evicted:
            self.eviction_count += len(evicted)
            logger.debug("Evicted %d LRU entries from memory", len(evicted))
        return evicted

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    def items(self) -> list[tuple[str, CacheEntry]]:
        return list(self._entries.items())

    def clear(self) -> None:
        self._entries.clear()
        self._size_bytes = 0

    def _enforce_budget(self, protect: str | None = None) -> list[str]:
        """Evict LRU entries until both budgets hold.

        The entry just written is never evicted by its own insertion, even if
        it alone exceeds ``max_size_bytes``.
        """
        evicted: list[str] = []

        if self.max_entries is not None and len(self._entries) > self.max_entries:
            evicted.extend(self.evict_lru(len(self._entries) - self.max_entries))

        if self.max_size_bytes is not None:
            while self._size_bytes > self.max_size_bytes and len(self._entries) > 1:
                oldest_key = next(iter(self._entries))
                if oldest_key == protect:
                    break
                evicted.extend(self.evict_lru(1))

        return evicted
