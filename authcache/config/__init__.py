"""Configuration package for authcache."""

from authcache.config.loader import default_config_paths, load_settings
from authcache.config.models import (
    AuthCacheSettings,
    CacheSettings,
    DurableSettings,
    LoggingSettings,
    NavigationSettings,
    PrefetchSettings,
)


__all__ = [
    "AuthCacheSettings",
    "CacheSettings",
    "DurableSettings",
    "LoggingSettings",
    "NavigationSettings",
    "PrefetchSettings",
    "default_config_paths",
    "load_settings",
]
