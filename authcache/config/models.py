"""Configuration models for the authorization cache."""

from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from authcache.models.base import AuthCacheBaseModel


if TYPE_CHECKING:
    from authcache.core.cache.models import CacheCategory


class CacheSettings(AuthCacheBaseModel):
    """TTLs, schema version and memory budget of the two-tier cache."""

    permission_ttl_seconds: float = Field(
        default=3600, ge=0, description="TTL for permission check results"
    )
    endpoint_ttl_seconds: float = Field(
        default=86400, ge=0, description="TTL for endpoint metadata"
    )
    role_ttl_seconds: float = Field(
        default=1800, ge=0, description="TTL for role assignments"
    )
    schema_version: int = Field(
        default=2,
        ge=1,
        description="Payload schema version; bump to orphan every stored entry",
    )
    max_memory_entries: int | None = Field(
        default=1000, ge=1, description="Memory tier entry budget"
    )
    max_memory_bytes: int | None = Field(
        default=None, ge=1, description="Memory tier payload size budget"
    )
    quota_eviction_fraction: float = Field(
        default=0.2,
        gt=0,
        le=1,
        description="Share of durable entries evicted when the quota is hit",
    )
    sweep_interval_seconds: float | None = Field(
        default=300,
        ge=0,
        description="Minimum time between background sweeps; 0 or null disables them",
    )

    def ttl_for(self, category: "CacheCategory | str") -> float:
        """Get the TTL in seconds for a category."""
        ttls = {
            "permission": self.permission_ttl_seconds,
            "endpoint": self.endpoint_ttl_seconds,
            "role": self.role_ttl_seconds,
        }
        return ttls[getattr(category, "value", category)]


class DurableSettings(AuthCacheBaseModel):
    """Durable tier backend selection."""

    backend: Literal["memory", "filesystem", "diskcache"] = Field(
        default="memory", description="Persistence backend for the durable tier"
    )
    path: Path | None = Field(
        default=None, description="Storage location for disk backends"
    )
    quota_bytes: int | None = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Durable tier byte quota; null for unbounded",
    )

    @field_validator("path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser()


class NavigationSettings(AuthCacheBaseModel):
    """Navigation history and transition model settings."""

    max_history: int = Field(
        default=50, ge=1, description="Navigation events kept per session"
    )
    decay_interval: int = Field(
        default=100,
        ge=1,
        description="Model updates between automatic halvings of transition counts",
    )
    count_self_transitions: bool = Field(
        default=False, description="Record route to same-route transitions"
    )
    model_state_path: Path | None = Field(
        default=None,
        description="Opt-in JSON file holding aggregated transition counts",
    )

    @field_validator("model_state_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser()


class PrefetchSettings(AuthCacheBaseModel):
    """Predictive prefetch settings."""

    enabled: bool = True
    top_k: int = Field(default=3, ge=1, description="Predictions considered per cycle")
    threshold: float = Field(
        default=0.3, ge=0, le=1, description="Minimum probability to prefetch a route"
    )
    max_concurrent: int = Field(
        default=3, ge=1, description="Maximum prefetches running at once"
    )
    delay_seconds: float = Field(
        default=0.5, ge=0, description="Wait before a scheduled prefetch starts"
    )
    initial_routes: list[str] = Field(
        default_factory=list,
        description="Routes whose bundles are preloaded when a session starts",
    )


class LoggingSettings(AuthCacheBaseModel):
    """Logging output settings."""

    level: str = "INFO"
    json_logs: bool = False
    file: Path | None = None

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper_v = v.strip().upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return upper_v


class AuthCacheSettings(BaseSettings):
    """Top-level settings with automatic environment variable support.

    Precedence order (highest to lowest):
    1. Environment variables, e.g. ``AUTHCACHE_CACHE__ROLE_TTL_SECONDS=600``
    2. Constructor arguments (YAML file data)
    3. .env file
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHCACHE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Environment variables override file configuration."""
        return (
            env_settings,
            init_settings,
            dotenv_settings,
            file_secret_settings,
        )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    durable: DurableSettings = Field(default_factory=DurableSettings)
    navigation: NavigationSettings = Field(default_factory=NavigationSettings)
    prefetch: PrefetchSettings = Field(default_factory=PrefetchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
