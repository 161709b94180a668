from .errors import (
    AuthCacheError,
    CacheError,
    ConfigError,
    DurableStoreError,
    LoaderError,
    LoaderTimeoutError,
    PrefetchError,
    QuotaExceededError,
)
from .logging import get_logger, setup_logging, setup_logging_from_settings


__all__ = [
    "setup_logging",
    "setup_logging_from_settings",
    "get_logger",
    "AuthCacheError",
    "CacheError",
    "ConfigError",
    "DurableStoreError",
    "LoaderError",
    "LoaderTimeoutError",
    "PrefetchError",
    "QuotaExceededError",
]
