"""Cache data models and types."""

import copy
import json
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Final


class _Missing:
    """Sentinel type for cache misses where ``None`` is a legitimate value."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


class CacheCategory(str, Enum):
    """Kind of authorization payload held by an entry.

    The value doubles as the key prefix, e.g. ``permission:user1:reports``.
    """

    PERMISSION = "permission"
    ENDPOINT_METADATA = "endpoint"
    ROLE_ASSIGNMENT = "role"

    @classmethod
    def from_key(cls, key: str) -> "CacheCategory":
        """Derive the category from the first segment of a composite key."""
        prefix = key.split(":", 1)[0]
        try:
            return cls(prefix)
        except ValueError:
            return cls.PERMISSION

    @property
    def eviction_priority(self) -> int:
        """Lower values are evicted first when last access times tie."""
        return _EVICTION_PRIORITY[self]


_EVICTION_PRIORITY = {
    CacheCategory.ROLE_ASSIGNMENT: 0,
    CacheCategory.PERMISSION: 1,
    CacheCategory.ENDPOINT_METADATA: 2,
}


def prepare_for_serialization(value: Any) -> Any:
    """Prepare value for JSON serialization."""
    if isinstance(value, str | int | float | bool) or value is None:
        return value
    elif isinstance(value, dict):
        return {str(k): prepare_for_serialization(v) for k, v in value.items()}
    elif isinstance(value, list | tuple | set | frozenset):
        return [prepare_for_serialization(item) for item in value]
    elif isinstance(value, Path):
        return str(value)
    elif hasattr(value, "model_dump"):
        # Pydantic models
        return value.model_dump(mode="json")
    elif hasattr(value, "__dict__"):
        return {
            k: prepare_for_serialization(v)
            for k, v in vars(value).items()
            if not k.startswith("_")
        }
    else:
        return str(value)


def estimate_size(value: Any) -> int:
    """Estimate the serialized size of a value in bytes."""
    return len(json.dumps(value, separators=(",", ":"), default=str).encode("utf-8"))


@dataclass
class CacheEntry:
    """A cached authorization payload together with its bookkeeping.

    ``expires_at`` is ``created_at`` plus the category TTL (or an explicit
    TTL). An entry is a hit only while ``now < expires_at`` and its
    ``version`` matches the configured schema version.
    """

    key: str
    value: Any
    category: CacheCategory
    created_at: float
    expires_at: float
    last_accessed_at: float
    version: int
    access_count: int = 0
    size_bytes: int = 0

    @classmethod
    def create(
        cls,
        key: str,
        value: Any,
        category: CacheCategory,
        ttl_seconds: float,
        version: int,
        now: float,
    ) -> "CacheEntry":
        prepared = copy.deepcopy(prepare_for_serialization(value))
        return cls(
            key=key,
            value=prepared,
            category=category,
            created_at=now,
            expires_at=now + max(ttl_seconds, 0),
            last_accessed_at=now,
            version=version,
            access_count=0,
            size_bytes=estimate_size(prepared),
        )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: float, version: int) -> bool:
        """True when the entry may be served as a hit."""
        return self.version == version and not self.is_expired(now)

    def touch(self, now: float) -> None:
        """Update last accessed time and increment access count."""
        self.last_accessed_at = now
        self.access_count += 1

    def copy_value(self) -> Any:
        """Return a deep copy so callers cannot mutate cached state."""
        return copy.deepcopy(self.value)

    def to_json(self) -> str:
        data = asdict(self)
        data["category"] = self.category.value
        return json.dumps(data, separators=(",", ":"), default=str)

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """Parse a serialized entry.

        Raises:
            ValueError: If the payload is not a valid entry document
        """
        try:
            data = json.loads(raw)
            data["category"] = CacheCategory(data["category"])
            return cls(**data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid cache entry document: {e}") from e


@dataclass
class CacheStats:
    """Two-tier cache statistics."""

    hit_count: int = 0
    miss_count: int = 0
    store_count: int = 0
    eviction_count: int = 0
    invalidation_count: int = 0
    error_count: int = 0
    dropped_write_count: int = 0
    prefetch_lookup_count: int = 0
    memory_hit_count: int = 0
    durable_hit_count: int = 0
    memory_entries: int = 0
    memory_size_bytes: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        total_requests = self.hit_count + self.miss_count
        if total_requests == 0:
            return 0.0
        return (self.hit_count / total_requests) * 100.0

    @property
    def miss_rate(self) -> float:
        """Calculate cache miss rate as percentage."""
        return 100.0 - self.hit_rate


class CacheKey:
    """Helper for building composite ``{category}:{identifier}`` keys."""

    @staticmethod
    def from_parts(category: CacheCategory | str, *parts: Any) -> str:
        prefix = category.value if isinstance(category, CacheCategory) else category
        return ":".join([prefix, *(str(part) for part in parts if part != "")])

    @staticmethod
    def permission(user_id: str, resource: str) -> str:
        return CacheKey.from_parts(CacheCategory.PERMISSION, user_id, resource)

    @staticmethod
    def role(user_id: str) -> str:
        return CacheKey.from_parts(CacheCategory.ROLE_ASSIGNMENT, user_id)

    @staticmethod
    def endpoint(endpoint: str) -> str:
        return CacheKey.from_parts(CacheCategory.ENDPOINT_METADATA, endpoint)
