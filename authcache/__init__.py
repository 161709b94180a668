"""authcache - client-side authorization cache with predictive prefetch."""

from authcache.config import AuthCacheSettings, load_settings
from authcache.core.cache import (
    MISSING,
    CacheCategory,
    CacheKey,
    CacheManager,
    DurableStore,
    MemoryStore,
    with_timeout,
)
from authcache.core.errors import (
    AuthCacheError,
    CacheError,
    ConfigError,
    DurableStoreError,
    LoaderError,
    LoaderTimeoutError,
    PrefetchError,
    QuotaExceededError,
)
from authcache.engine import AuthCacheEngine, create_engine
from authcache.metrics import MetricsSnapshot, PerformanceMonitor
from authcache.navigation import (
    BundleLoader,
    NavigationTracker,
    Prediction,
    PredictivePrefetcher,
    TransitionModel,
)


__version__ = "0.1.0"

__all__ = [
    "AuthCacheEngine",
    "AuthCacheError",
    "AuthCacheSettings",
    "BundleLoader",
    "CacheCategory",
    "CacheError",
    "CacheKey",
    "CacheManager",
    "ConfigError",
    "DurableStore",
    "DurableStoreError",
    "LoaderError",
    "LoaderTimeoutError",
    "MISSING",
    "MemoryStore",
    "MetricsSnapshot",
    "NavigationTracker",
    "PerformanceMonitor",
    "Prediction",
    "PredictivePrefetcher",
    "PrefetchError",
    "QuotaExceededError",
    "TransitionModel",
    "create_engine",
    "load_settings",
    "with_timeout",
    "__version__",
]
