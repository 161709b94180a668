"""Persistence backends for the durable cache tier.

A backend is a small synchronous key-value store with a byte quota, in the
spirit of a browser's ``localStorage``. ``DurableStore`` is the only caller;
it owns versioning, expiry and quota recovery, so backends stay dumb.
"""

import base64
import logging
import os
import sqlite3
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import diskcache  # type: ignore[import-untyped]

from authcache.core.errors import ConfigError, DurableStoreError, QuotaExceededError


if TYPE_CHECKING:
    from authcache.config.models import DurableSettings


logger = logging.getLogger(__name__)


@runtime_checkable
class PersistenceBackend(Protocol):
    """Key-value persistence capability consumed by ``DurableStore``."""

    def get(self, key: str) -> str | None:
        """Return the stored string or None when absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a string.

        Raises:
            QuotaExceededError: If storing the value would exceed the quota
            DurableStoreError: If the underlying storage failed
        """
        ...

    def delete(self, key: str) -> bool:
        """Remove a key, returning True if it existed."""
        ...

    def keys(self) -> list[str]:
        """All keys currently stored."""
        ...

    def usage_bytes(self) -> int:
        """Bytes counted against the quota."""
        ...


def _check_quota(
    key: str, usage: int, existing: int, required: int, quota: int | None
) -> None:
    if quota is None:
        return
    projected = usage - existing + required
    if projected > quota:
        raise QuotaExceededError(
            f"Storing {key} needs {required} bytes, {quota - usage + existing} available",
            required_bytes=required,
            quota_bytes=quota,
        )


class MemoryBackend:
    """Dictionary-backed persistence with a byte quota.

    Lives as long as the object does; useful as the default tier for tests and
    for hosts without a writable disk.
    """

    def __init__(self, quota_bytes: int | None = 5 * 1024 * 1024):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._usage = 0

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        required = len(value.encode("utf-8"))
        existing_value = self._data.get(key)
        existing = len(existing_value.encode("utf-8")) if existing_value else 0
        _check_quota(key, self._usage, existing, required, self.quota_bytes)

        self._data[key] = value
        self._usage += required - existing

    def delete(self, key: str) -> bool:
        value = self._data.pop(key, None)
        if value is None:
            return False
        self._usage -= len(value.encode("utf-8"))
        return True

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def usage_bytes(self) -> int:
        return self._usage


class FilesystemBackend:
    """One file per key under a root directory.

    File names are the URL-safe base64 encoding of the key so that routes and
    ``:`` separators survive on every platform. Writes go through a temporary
    file and ``os.replace`` so readers never see a half-written document.

    Usage is measured once when the backend opens and then tracked per write
    and delete; files changed behind its back are not accounted for.
    """

    SUFFIX = ".json"

    def __init__(self, root: Path, quota_bytes: int | None = 5 * 1024 * 1024):
        self.root = Path(root)
        self.quota_bytes = quota_bytes
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DurableStoreError(
                f"Cannot create cache directory {self.root}: {e}"
            ) from e
        self._usage = self._measure_usage()
        logger.debug(
            "Initialized filesystem backend at: %s (%d bytes used)",
            self.root,
            self._usage,
        )

    def _path_for(self, key: str) -> Path:
        encoded = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")
        return self.root / f"{encoded.rstrip('=')}{self.SUFFIX}"

    @staticmethod
    def _key_for(path: Path) -> str | None:
        encoded = path.name[: -len(FilesystemBackend.SUFFIX)]
        padding = "=" * (-len(encoded) % 4)
        try:
            return base64.urlsafe_b64decode(encoded + padding).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise DurableStoreError(f"Failed to read cache entry {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        required = len(value.encode("utf-8"))
        try:
            existing = path.stat().st_size
        except FileNotFoundError:
            existing = 0
        _check_quota(key, self._usage, existing, required, self.quota_bytes)

        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise DurableStoreError(f"Failed to write cache entry {key}: {e}") from e
        self._usage += required - existing

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            size = path.stat().st_size
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise DurableStoreError(f"Failed to delete cache entry {key}: {e}") from e
        self._usage = max(self._usage - size, 0)
        return True

    def keys(self) -> list[str]:
        keys = []
        for path in self.root.glob(f"*{self.SUFFIX}"):
            key = self._key_for(path)
            if key is None:
                logger.warning("Ignoring unrecognised cache file: %s", path)
                continue
            keys.append(key)
        return keys

    def usage_bytes(self) -> int:
        return self._usage

    def _measure_usage(self) -> int:
        total = 0
        try:
            for path in self.root.glob(f"*{self.SUFFIX}"):
                try:
                    total += path.stat().st_size
                except FileNotFoundError:
                    continue
        except OSError as e:
            raise DurableStoreError(f"Cannot scan cache directory {self.root}: {e}") from e
        return total


class DiskCacheBackend:
    """SQLite-backed persistence using the DiskCache library.

    DiskCache's own culling is disabled so that a full store surfaces as
    ``QuotaExceededError`` and the durable tier can run its eviction policy.
    Every SQLite or lock-timeout failure is raised as ``DurableStoreError``.
    """

    def __init__(
        self,
        directory: Path,
        quota_bytes: int | None = 5 * 1024 * 1024,
        timeout: float = 1.0,
    ):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = diskcache.Cache(
                directory=str(self.directory),
                timeout=timeout,
                cull_limit=0,
            )
        except (OSError, sqlite3.Error, diskcache.Timeout) as e:
            raise DurableStoreError(
                f"Cannot open DiskCache store at {self.directory}: {e}"
            ) from e
        self._usage = self._measure_usage()
        logger.debug(
            "DiskCache backend initialized at %s (%d bytes used)",
            self.directory,
            self._usage,
        )

    def get(self, key: str) -> str | None:
        try:
            value = self._cache.get(key, default=None)
        except (sqlite3.Error, diskcache.Timeout) as e:
            raise DurableStoreError(f"Failed to read cache entry {key}: {e}") from e
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        required = len(value.encode("utf-8"))
        existing_value = self.get(key)
        existing = len(existing_value.encode("utf-8")) if existing_value else 0
        _check_quota(key, self._usage, existing, required, self.quota_bytes)

        try:
            self._cache.set(key, value)
        except (sqlite3.Error, diskcache.Timeout) as e:
            raise DurableStoreError(f"Failed to write cache entry {key}: {e}") from e
        self._usage += required - existing

    def delete(self, key: str) -> bool:
        existing_value = self.get(key)
        try:
            deleted = bool(self._cache.delete(key))
        except (sqlite3.Error, diskcache.Timeout) as e:
            raise DurableStoreError(f"Failed to delete cache entry {key}: {e}") from e
        if deleted and existing_value:
            self._usage = max(self._usage - len(existing_value.encode("utf-8")), 0)
        return deleted

    def keys(self) -> list[str]:
        try:
            return [key for key in self._cache.iterkeys() if isinstance(key, str)]
        except (sqlite3.Error, diskcache.Timeout) as e:
            raise DurableStoreError(f"Failed to list cache keys: {e}") from e

    def usage_bytes(self) -> int:
        return self._usage

    def close(self) -> None:
        self._cache.close()

    def _measure_usage(self) -> int:
        total = 0
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                total += len(value.encode("utf-8"))
        return total


def create_backend(settings: "DurableSettings") -> PersistenceBackend:
    """Create the persistence backend selected by configuration.

    Raises:
        ConfigError: If a disk backend is selected without a path
    """
    if settings.backend == "memory":
        return MemoryBackend(quota_bytes=settings.quota_bytes)

    if settings.path is None:
        raise ConfigError(f"durable.path is required for the {settings.backend} backend")

    if settings.backend == "filesystem":
        return FilesystemBackend(settings.path, quota_bytes=settings.quota_bytes)
    return DiskCacheBackend(settings.path, quota_bytes=settings.quota_bytes)
