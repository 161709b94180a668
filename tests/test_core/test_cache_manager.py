"""Tests for the two-tier cache manager."""

import asyncio
import sqlite3
from unittest.mock import Mock

import diskcache
import pytest

from authcache.config.models import AuthCacheSettings, CacheSettings
from authcache.core.cache import (
    MISSING,
    CacheManager,
    DiskCacheBackend,
    DurableStore,
    MemoryBackend,
    MemoryStore,
    create_cache_manager,
    create_memory_cache_manager,
    with_timeout,
)
from authcache.core.errors import (
    DurableStoreError,
    LoaderError,
    LoaderTimeoutError,
    QuotaExceededError,
)
from authcache.metrics.monitor import PerformanceMonitor


KEY = "permission:u1:r1"


class AlwaysFullBackend(MemoryBackend):
    def set(self, key: str, value: str) -> None:
        raise QuotaExceededError("quota exceeded")


class UnreadableBackend(MemoryBackend):
    def get(self, key: str) -> str | None:
        raise DurableStoreError("read failed")


def fresh_manager(
    durable: DurableStore, clock, settings: CacheSettings | None = None
) -> CacheManager:
    """A manager with an empty memory tier over an existing durable tier."""
    return CacheManager(
        memory=MemoryStore(max_entries=100, clock=clock),
        durable=durable,
        settings=settings or CacheSettings(sweep_interval_seconds=0),
        clock=clock,
    )


class TestReadWrite:
    """Test get/set with TTL expiry."""

    @pytest.mark.asyncio
    async def test_set_then_get_is_a_hit(self, cache_manager: CacheManager):
        await cache_manager.set(KEY, {"allow": True}, category="permission")

        assert await cache_manager.get(KEY) == {"allow": True}
        assert cache_manager.stats.hit_count == 1
        assert cache_manager.stats.memory_hit_count == 1

    @pytest.mark.asyncio
    async def test_miss_after_permission_ttl(self, cache_manager: CacheManager, clock):
        await cache_manager.set(KEY, {"allow": True})
        clock.advance(3601)

        assert await cache_manager.get(KEY) is None
        assert cache_manager.stats.miss_count == 1

    @pytest.mark.parametrize(
        ("elapsed", "is_hit"), [(3599, True), (3600, False), (3601, False)]
    )
    @pytest.mark.asyncio
    async def test_permission_ttl_boundary(
        self, cache_manager: CacheManager, clock, elapsed: float, is_hit: bool
    ):
        await cache_manager.set(KEY, {"allow": True})
        clock.advance(elapsed)

        assert await cache_manager.contains(KEY) is is_hit

    @pytest.mark.asyncio
    async def test_role_ttl(self, cache_manager: CacheManager, clock):
        await cache_manager.set("role:u1", ["viewer"])

        clock.advance(1799)
        assert await cache_manager.get("role:u1") == ["viewer"]
        clock.advance(1)
        assert await cache_manager.get("role:u1") is None

    @pytest.mark.asyncio
    async def test_explicit_category_sets_ttl(self, cache_manager: CacheManager, clock):
        await cache_manager.set("api-users", {"methods": ["GET"]}, category="endpoint")
        clock.advance(86399)

        assert await cache_manager.get("api-users") == {"methods": ["GET"]}

    @pytest.mark.asyncio
    async def test_zero_ttl_is_never_a_hit(self, cache_manager: CacheManager):
        await cache_manager.set(KEY, {"allow": True}, ttl=0)

        assert await cache_manager.get(KEY) is None

    @pytest.mark.asyncio
    async def test_missing_sentinel_distinguishes_cached_none(
        self, cache_manager: CacheManager
    ):
        await cache_manager.set(KEY, None)

        assert await cache_manager.get(KEY, MISSING) is None
        assert await cache_manager.get("permission:u1:absent", MISSING) is MISSING

    @pytest.mark.asyncio
    async def test_values_are_copies(self, cache_manager: CacheManager):
        value = {"roles": ["viewer"]}
        await cache_manager.set("role:u1", value)
        value["roles"].append("admin")

        first = await cache_manager.get("role:u1")
        first["roles"].append("owner")

        assert await cache_manager.get("role:u1") == {"roles": ["viewer"]}

    @pytest.mark.asyncio
    async def test_contains_does_not_count(self, cache_manager: CacheManager):
        await cache_manager.set(KEY, True)

        assert await cache_manager.contains(KEY)
        assert not await cache_manager.contains("permission:u1:absent")
        assert cache_manager.stats.hit_count == 0
        assert cache_manager.stats.miss_count == 0


class TestDurableTier:
    """Test promotion, versioning and degraded durable tiers."""

    @pytest.mark.asyncio
    async def test_durable_hit_is_promoted(
        self, cache_manager: CacheManager, durable_store: DurableStore, clock
    ):
        await cache_manager.set(KEY, {"allow": True})
        manager = fresh_manager(durable_store, clock)

        assert await manager.get(KEY) == {"allow": True}
        assert KEY in manager.memory
        assert manager.stats.durable_hit_count == 1

        await manager.get(KEY)
        assert manager.stats.memory_hit_count == 1

    @pytest.mark.asyncio
    async def test_schema_version_change_orphans_entries(
        self, cache_manager: CacheManager, memory_backend: MemoryBackend, clock
    ):
        await cache_manager.set(KEY, {"allow": True})
        durable_v3 = DurableStore(memory_backend, version=3, clock=clock)
        manager = fresh_manager(
            durable_v3, clock, CacheSettings(schema_version=3, sweep_interval_seconds=0)
        )

        assert await manager.get(KEY) is None

    @pytest.mark.asyncio
    async def test_quota_failure_falls_back_to_memory(self, clock):
        manager = CacheManager(
            memory=MemoryStore(clock=clock),
            durable=DurableStore(AlwaysFullBackend(), version=2, clock=clock),
            settings=CacheSettings(sweep_interval_seconds=0),
            clock=clock,
        )

        await manager.set("k", {"allow": True})

        assert await manager.get("k") == {"allow": True}
        assert manager.stats.dropped_write_count == 1

    @pytest.mark.asyncio
    async def test_durable_read_error_is_a_miss(self, clock):
        manager = fresh_manager(
            DurableStore(UnreadableBackend(), version=2, clock=clock), clock
        )

        assert await manager.get(KEY, "fallback") == "fallback"
        assert manager.stats.error_count == 1

    @pytest.mark.asyncio
    async def test_locked_diskcache_store_stays_inside_the_cache(
        self, tmp_path, clock
    ):
        backend = DiskCacheBackend(tmp_path / "dc", quota_bytes=None)
        real_cache = backend._cache
        locked = Mock(spec=diskcache.Cache)
        locked.iterkeys.side_effect = sqlite3.OperationalError("database is locked")
        locked.get.side_effect = sqlite3.OperationalError("database is locked")
        locked.set.side_effect = sqlite3.OperationalError("database is locked")
        locked.delete.side_effect = sqlite3.OperationalError("database is locked")
        backend._cache = locked
        manager = fresh_manager(DurableStore(backend, version=2, clock=clock), clock)
        try:
            await manager.set(KEY, {"allow": True})
            assert await manager.get(KEY) == {"allow": True}
            assert await manager.invalidate_prefix("permission:u1:") == 1
            await manager.clear()
            assert await manager.sweep() == 0
            assert manager.stats.error_count == 4
        finally:
            real_cache.close()

    @pytest.mark.asyncio
    async def test_memory_only_manager(self, clock):
        manager = create_memory_cache_manager(max_entries=10, clock=clock)

        await manager.set(KEY, True)

        assert manager.durable is None
        assert await manager.get(KEY) is True

    @pytest.mark.asyncio
    async def test_factory_wires_settings(self, clock):
        settings = AuthCacheSettings(
            cache={"schema_version": 5, "max_memory_entries": 7}
        )
        backend = MemoryBackend(quota_bytes=None)

        manager = create_cache_manager(settings, backend=backend, clock=clock)
        await manager.set(KEY, True)

        assert manager.memory.max_entries == 7
        assert backend.keys() == [f"v5:{KEY}"]


class TestInvalidation:
    """Test explicit invalidation across both tiers."""

    @pytest.mark.asyncio
    async def test_invalidate(
        self, cache_manager: CacheManager, memory_backend: MemoryBackend
    ):
        await cache_manager.set(KEY, True)

        assert await cache_manager.invalidate(KEY) is True
        assert await cache_manager.get(KEY) is None
        assert memory_backend.keys() == []
        assert await cache_manager.invalidate(KEY) is False

    @pytest.mark.asyncio
    async def test_invalidate_prefix_counts_both_tiers(
        self, cache_manager: CacheManager
    ):
        for key in ("permission:u1:a", "permission:u1:b", "permission:u2:a"):
            await cache_manager.set(key, True)

        assert await cache_manager.invalidate_prefix("permission:u1:") == 4
        assert await cache_manager.get("permission:u2:a") is True

    @pytest.mark.asyncio
    async def test_invalidate_user(self, cache_manager: CacheManager):
        await cache_manager.set("role:u1", ["admin"])
        await cache_manager.set("permission:u1:reports", True)
        await cache_manager.set("permission:u10:reports", True)
        await cache_manager.set("endpoint:/api/users", {"methods": ["GET"]})

        removed = await cache_manager.invalidate_user("u1")

        assert removed == 3
        assert await cache_manager.get("role:u1") is None
        assert await cache_manager.get("permission:u1:reports") is None
        assert await cache_manager.get("permission:u10:reports") is True
        assert await cache_manager.get("endpoint:/api/users") == {"methods": ["GET"]}

    @pytest.mark.asyncio
    async def test_clear_removes_every_version(
        self, cache_manager: CacheManager, memory_backend: MemoryBackend
    ):
        await cache_manager.set(KEY, True)
        memory_backend.set("v1:permission:u1:old", "{}")

        await cache_manager.clear()

        assert len(cache_manager.memory) == 0
        assert memory_backend.keys() == []


class TestWarm:
    """Test single-flight warming."""

    @pytest.mark.asyncio
    async def test_concurrent_warms_share_one_load(self, cache_manager: CacheManager):
        calls = 0
        gate = asyncio.Event()

        async def slow_loader():
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"allow": True}

        waiters = [
            asyncio.create_task(cache_manager.warm(KEY, slow_loader)) for _ in range(3)
        ]
        await asyncio.sleep(0)
        assert cache_manager.in_flight_keys() == [KEY]

        gate.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert results == [{"allow": True}] * 3
        assert await cache_manager.get(KEY) == {"allow": True}
        assert cache_manager.in_flight_keys() == []

    @pytest.mark.asyncio
    async def test_warm_returns_cached_value_without_loading(
        self, cache_manager: CacheManager
    ):
        await cache_manager.set(KEY, {"allow": False})

        def loader():
            raise AssertionError("loader must not run on a hit")

        assert await cache_manager.warm(KEY, loader) == {"allow": False}

    @pytest.mark.asyncio
    async def test_sync_loader(self, cache_manager: CacheManager):
        assert await cache_manager.warm("role:u1", lambda: ["viewer"]) == ["viewer"]
        assert await cache_manager.get("role:u1") == ["viewer"]

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter_then_retries(
        self, cache_manager: CacheManager
    ):
        async def failing_loader():
            await asyncio.sleep(0)
            raise RuntimeError("authorization service down")

        results = await asyncio.gather(
            *(cache_manager.warm(KEY, failing_loader) for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(r, LoaderError) for r in results)
        assert results[0] is results[1] is results[2]
        assert isinstance(results[0].__cause__, RuntimeError)
        assert await cache_manager.get(KEY) is None

        assert await cache_manager.warm(KEY, lambda: {"allow": True}) == {"allow": True}

    @pytest.mark.asyncio
    async def test_timeout(self, cache_manager: CacheManager):
        async def hanging_loader():
            await asyncio.sleep(10)

        with pytest.raises(LoaderTimeoutError) as exc_info:
            await cache_manager.warm(KEY, with_timeout(hanging_loader, 0.01))

        assert exc_info.value.key == KEY
        assert cache_manager.in_flight_keys() == []

    @pytest.mark.asyncio
    async def test_cancelling_one_waiter_keeps_the_load(
        self, cache_manager: CacheManager
    ):
        gate = asyncio.Event()

        async def loader():
            await gate.wait()
            return "granted"

        first = asyncio.create_task(cache_manager.warm(KEY, loader))
        second = asyncio.create_task(cache_manager.warm(KEY, loader))
        await asyncio.sleep(0)

        first.cancel()
        gate.set()

        assert await second == "granted"
        with pytest.raises(asyncio.CancelledError):
            await first
        assert await cache_manager.get(KEY) == "granted"

    @pytest.mark.asyncio
    async def test_invalidation_during_load_is_not_cached(
        self, cache_manager: CacheManager
    ):
        started = asyncio.Event()
        gate = asyncio.Event()

        async def loader():
            started.set()
            await gate.wait()
            return {"allow": True}

        waiter = asyncio.create_task(cache_manager.warm(KEY, loader))
        await started.wait()
        await cache_manager.invalidate(KEY)
        gate.set()

        assert await waiter == {"allow": True}
        assert await cache_manager.get(KEY) is None

    @pytest.mark.asyncio
    async def test_warm_after_invalidation_starts_fresh_load(
        self, cache_manager: CacheManager
    ):
        started = asyncio.Event()
        gate = asyncio.Event()
        calls: list[str] = []

        async def revoked_loader():
            calls.append("before")
            started.set()
            await gate.wait()
            return {"allow": True}

        async def current_loader():
            calls.append("after")
            return {"allow": False}

        earlier = asyncio.create_task(cache_manager.warm(KEY, revoked_loader))
        await started.wait()
        await cache_manager.invalidate(KEY)

        later = asyncio.create_task(cache_manager.warm(KEY, current_loader))
        await asyncio.sleep(0)
        gate.set()

        assert await later == {"allow": False}
        assert await earlier == {"allow": True}
        assert calls == ["before", "after"]
        assert await cache_manager.get(KEY) == {"allow": False}
        assert cache_manager.in_flight_keys() == []

    @pytest.mark.asyncio
    async def test_waiter_joining_before_invalidation_keeps_first_load(
        self, cache_manager: CacheManager
    ):
        started = asyncio.Event()
        gate = asyncio.Event()
        calls: list[str] = []

        async def loader():
            calls.append("load")
            started.set()
            await gate.wait()
            return {"allow": True}

        first = asyncio.create_task(cache_manager.warm(KEY, loader))
        await started.wait()
        second = asyncio.create_task(cache_manager.warm(KEY, loader))
        await asyncio.sleep(0)
        await cache_manager.invalidate_prefix("permission:u1:")
        gate.set()

        assert await first == {"allow": True}
        assert await second == {"allow": True}
        assert calls == ["load"]
        assert await cache_manager.contains(KEY) is False

    @pytest.mark.asyncio
    async def test_speculative_warm_is_not_a_hit_or_miss(
        self, cache_manager: CacheManager, monitor: PerformanceMonitor
    ):
        await cache_manager.warm(KEY, lambda: {"allow": True}, speculative=True)
        await cache_manager.warm(KEY, lambda: {"allow": False}, speculative=True)

        assert monitor.hits == 0
        assert monitor.misses == 0
        assert cache_manager.stats.prefetch_lookup_count == 2

        assert await cache_manager.warm(KEY, lambda: {"allow": False}) == {
            "allow": True
        }
        assert monitor.hits == 1


class TestMaintenance:
    """Test sweeping, eviction reporting and statistics."""

    @pytest.mark.asyncio
    async def test_sweep(
        self, cache_manager: CacheManager, memory_backend: MemoryBackend, clock
    ):
        await cache_manager.set("permission:u1:short", True, ttl=5)
        await cache_manager.set("permission:u1:long", True)
        clock.advance(10)

        assert await cache_manager.sweep() == 2
        assert cache_manager.memory.keys() == ["permission:u1:long"]
        assert memory_backend.keys() == ["v2:permission:u1:long"]

    @pytest.mark.asyncio
    async def test_background_sweep_after_interval(
        self,
        memory_store: MemoryStore,
        durable_store: DurableStore,
        memory_backend: MemoryBackend,
        clock,
    ):
        manager = CacheManager(
            memory=memory_store,
            durable=durable_store,
            settings=CacheSettings(sweep_interval_seconds=60),
            clock=clock,
        )
        await manager.set("permission:u1:old", True, ttl=30)
        clock.advance(61)

        await manager.set("permission:u1:new", True)
        await asyncio.sleep(0.01)

        assert "v2:permission:u1:old" not in memory_backend.keys()
        assert "permission:u1:old" not in manager.memory
        await manager.close()

    @pytest.mark.asyncio
    async def test_evictions_reported_to_monitor(self, clock):
        monitor = PerformanceMonitor()
        manager = CacheManager(
            memory=MemoryStore(max_entries=2, clock=clock),
            settings=CacheSettings(sweep_interval_seconds=0),
            monitor=monitor,
            clock=clock,
        )

        for name in ("a", "b", "c"):
            await manager.set(f"permission:u1:{name}", True)
        await manager.get("permission:u1:c")
        await manager.get("permission:u1:a")

        assert monitor.evictions == 1
        assert monitor.hits == 1
        assert monitor.misses == 1
        stats = manager.get_stats()
        assert stats.eviction_count == 1
        assert stats.memory_entries == 2
        assert manager.get_cache_efficiency() == 50.0
