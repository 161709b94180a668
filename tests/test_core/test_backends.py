"""Tests for durable tier persistence backends."""

import sqlite3
from pathlib import Path
from unittest.mock import Mock

import diskcache
import pytest

from authcache.config.models import DurableSettings
from authcache.core.cache.backends import (
    DiskCacheBackend,
    FilesystemBackend,
    MemoryBackend,
    PersistenceBackend,
    create_backend,
)
from authcache.core.errors import ConfigError, DurableStoreError, QuotaExceededError


class TestMemoryBackend:
    """Test MemoryBackend quota accounting."""

    def test_basic_operations(self):
        backend = MemoryBackend(quota_bytes=None)
        backend.set("v2:role:u1", "viewer")

        assert backend.get("v2:role:u1") == "viewer"
        assert backend.keys() == ["v2:role:u1"]
        assert backend.usage_bytes() == 6
        assert backend.delete("v2:role:u1") is True
        assert backend.delete("v2:role:u1") is False
        assert backend.get("v2:role:u1") is None
        assert backend.usage_bytes() == 0

    def test_quota_exceeded(self):
        backend = MemoryBackend(quota_bytes=10)
        backend.set("a", "12345")

        with pytest.raises(QuotaExceededError) as exc_info:
            backend.set("b", "123456")

        assert exc_info.value.required_bytes == 6
        assert exc_info.value.quota_bytes == 10
        assert backend.get("b") is None
        assert backend.usage_bytes() == 5

    def test_overwrite_reuses_existing_space(self):
        backend = MemoryBackend(quota_bytes=10)
        backend.set("a", "12345")
        backend.set("a", "1234567890")

        assert backend.usage_bytes() == 10

    def test_satisfies_protocol(self):
        assert isinstance(MemoryBackend(), PersistenceBackend)


class TestFilesystemBackend:
    """Test FilesystemBackend file layout and quota."""

    def test_keys_with_separators_round_trip(self, tmp_path: Path):
        backend = FilesystemBackend(tmp_path / "cache", quota_bytes=None)
        backend.set("v2:endpoint:/api/users", '{"methods":["GET"]}')
        backend.set("v2:permission:u1:reports/2024", "{}")

        assert sorted(backend.keys()) == [
            "v2:endpoint:/api/users",
            "v2:permission:u1:reports/2024",
        ]
        assert backend.get("v2:endpoint:/api/users") == '{"methods":["GET"]}'
        assert all(p.is_file() for p in (tmp_path / "cache").iterdir())

    def test_usage_and_delete(self, tmp_path: Path):
        backend = FilesystemBackend(tmp_path, quota_bytes=None)
        backend.set("k1", "abc")
        backend.set("k2", "defg")

        assert backend.usage_bytes() == 7
        assert backend.delete("k1") is True
        assert backend.delete("k1") is False
        assert backend.get("k1") is None
        assert backend.usage_bytes() == 4

    def test_quota_exceeded(self, tmp_path: Path):
        backend = FilesystemBackend(tmp_path, quota_bytes=5)
        backend.set("k1", "abc")

        with pytest.raises(QuotaExceededError):
            backend.set("k2", "abc")
        assert backend.keys() == ["k1"]

    def test_ignores_foreign_files(self, tmp_path: Path):
        backend = FilesystemBackend(tmp_path, quota_bytes=None)
        backend.set("k1", "abc")
        (tmp_path / "README.txt").write_text("not a cache file")

        assert backend.keys() == ["k1"]

    def test_usage_is_measured_on_open(self, tmp_path: Path):
        first = FilesystemBackend(tmp_path, quota_bytes=10)
        first.set("k1", "abc")
        first.set("k2", "defg")

        reopened = FilesystemBackend(tmp_path, quota_bytes=10)

        assert reopened.usage_bytes() == 7
        with pytest.raises(QuotaExceededError):
            reopened.set("k3", "1234")

    def test_overwrite_tracks_size_difference(self, tmp_path: Path):
        backend = FilesystemBackend(tmp_path, quota_bytes=None)
        backend.set("k1", "abcdef")
        backend.set("k1", "ab")

        assert backend.usage_bytes() == 2


class TestDiskCacheBackend:
    """Test the DiskCache-backed store."""

    def test_basic_operations(self, tmp_path: Path):
        backend = DiskCacheBackend(tmp_path / "dc", quota_bytes=None)
        try:
            backend.set("v2:role:u1", '["viewer"]')

            assert backend.get("v2:role:u1") == '["viewer"]'
            assert backend.get("v2:role:u2") is None
            assert backend.keys() == ["v2:role:u1"]
            assert backend.usage_bytes() == 10
            assert backend.delete("v2:role:u1") is True
            assert backend.delete("v2:role:u1") is False
        finally:
            backend.close()

    def test_quota_exceeded(self, tmp_path: Path):
        backend = DiskCacheBackend(tmp_path / "dc", quota_bytes=8)
        try:
            backend.set("a", "1234")
            with pytest.raises(QuotaExceededError):
                backend.set("b", "12345")
        finally:
            backend.close()

    def test_usage_is_measured_on_open(self, tmp_path: Path):
        first = DiskCacheBackend(tmp_path / "dc", quota_bytes=None)
        first.set("a", "1234")
        first.set("b", "123")
        first.close()

        reopened = DiskCacheBackend(tmp_path / "dc", quota_bytes=None)
        try:
            assert reopened.usage_bytes() == 7
            reopened.delete("a")
            assert reopened.usage_bytes() == 3
        finally:
            reopened.close()

    @pytest.mark.parametrize(
        "error",
        [sqlite3.OperationalError("database is locked"), diskcache.Timeout()],
        ids=["sqlite", "timeout"],
    )
    def test_storage_failures_are_wrapped(self, tmp_path: Path, error):
        backend = DiskCacheBackend(tmp_path / "dc", quota_bytes=None)
        real_cache = backend._cache
        failing = Mock(spec=diskcache.Cache)
        failing.iterkeys.side_effect = error
        failing.get.side_effect = error
        failing.set.side_effect = error
        failing.delete.side_effect = error
        backend._cache = failing
        try:
            with pytest.raises(DurableStoreError):
                backend.keys()
            with pytest.raises(DurableStoreError):
                backend.get("a")
            with pytest.raises(DurableStoreError):
                backend.set("a", "1")
            with pytest.raises(DurableStoreError):
                backend.delete("a")
        finally:
            real_cache.close()

    def test_unopenable_directory_is_wrapped(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(DurableStoreError, match="Cannot open"):
            DiskCacheBackend(blocker / "dc")


class TestCreateBackend:
    """Test backend selection from settings."""

    def test_memory_default(self):
        backend = create_backend(DurableSettings())

        assert isinstance(backend, MemoryBackend)
        assert backend.quota_bytes == 5 * 1024 * 1024

    def test_filesystem(self, tmp_path: Path):
        backend = create_backend(
            DurableSettings(backend="filesystem", path=tmp_path / "fs", quota_bytes=100)
        )

        assert isinstance(backend, FilesystemBackend)
        assert backend.quota_bytes == 100
        assert (tmp_path / "fs").is_dir()

    def test_diskcache(self, tmp_path: Path):
        backend = create_backend(DurableSettings(backend="diskcache", path=tmp_path))

        assert isinstance(backend, DiskCacheBackend)
        backend.close()

    def test_disk_backend_requires_path(self):
        with pytest.raises(ConfigError, match="durable.path"):
            create_backend(DurableSettings(backend="filesystem"))
