"""Exception hierarchy for authcache.

Cache misses are never exceptions; they are signalled with a default value.
"""


class AuthCacheError(Exception):
    """Base exception for all authcache errors."""


class ConfigError(AuthCacheError):
    """Invalid or unreadable configuration."""


class CacheError(AuthCacheError):
    """Base class for cache tier errors."""


class DurableStoreError(CacheError):
    """The durable persistence backend failed."""


class QuotaExceededError(DurableStoreError):
    """The persistence backend refused a write because its quota is full."""

    def __init__(self, message: str, required_bytes: int = 0, quota_bytes: int = 0):
        super().__init__(message)
        self.required_bytes = required_bytes
        self.quota_bytes = quota_bytes


class LoaderError(CacheError):
    """An authorization-data loader failed while warming a key.

    Every single-flight waiter receives the same instance; the original
    exception is available as ``__cause__``.
    """

    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


class LoaderTimeoutError(LoaderError):
    """A loader wrapped with ``with_timeout`` did not finish in time."""


class PrefetchError(AuthCacheError):
    """A speculative prefetch failed. Never propagated past the prefetcher."""

    def __init__(self, route: str, message: str):
        super().__init__(message)
        self.route = route
