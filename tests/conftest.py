"""Core test fixtures for the authcache project."""

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from authcache.config.models import AuthCacheSettings
from authcache.core.cache.backends import MemoryBackend
from authcache.core.cache.cache_manager import CacheManager
from authcache.core.cache.durable_store import DurableStore
from authcache.core.cache.memory_store import MemoryStore
from authcache.core.cache.models import CacheCategory, CacheEntry
from authcache.metrics.monitor import PerformanceMonitor


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---- Base Fixtures ----


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_entry(clock: FakeClock) -> Callable[..., CacheEntry]:
    """Build entries stamped with the fake clock's current time."""

    def _make(
        key: str, value: Any = None, ttl: float = 60, version: int = 2
    ) -> CacheEntry:
        return CacheEntry.create(
            key=key,
            value={"allow": True} if value is None else value,
            category=CacheCategory.from_key(key),
            ttl_seconds=ttl,
            version=version,
            now=clock(),
        )

    return _make


# ---- Test Isolation Fixtures ----


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Keep user config files and AUTHCACHE_* variables out of every test."""
    for name in list(os.environ):
        if name.upper().startswith("AUTHCACHE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)


# ---- Engine Component Fixtures ----


@pytest.fixture
def settings() -> AuthCacheSettings:
    """Settings with background sweeps and prefetch delays disabled."""
    return AuthCacheSettings(
        cache={"sweep_interval_seconds": 0},
        prefetch={"delay_seconds": 0},
    )


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor()


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend(quota_bytes=None)


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(max_entries=100, clock=clock)


@pytest.fixture
def durable_store(memory_backend: MemoryBackend, clock: FakeClock) -> DurableStore:
    return DurableStore(memory_backend, version=2, clock=clock)


@pytest.fixture
def cache_manager(
    memory_store: MemoryStore,
    durable_store: DurableStore,
    settings: AuthCacheSettings,
    monitor: PerformanceMonitor,
    clock: FakeClock,
) -> CacheManager:
    return CacheManager(
        memory=memory_store,
        durable=durable_store,
        settings=settings.cache,
        monitor=monitor,
        clock=clock,
    )
