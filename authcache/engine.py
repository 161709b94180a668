"""Composition root wiring the cache, navigation model and prefetcher."""

import time
from collections.abc import Callable, Iterable
from functools import partial
from typing import Any

from authcache.config.models import AuthCacheSettings
from authcache.core.cache import create_cache_manager
from authcache.core.cache.backends import PersistenceBackend
from authcache.core.cache.cache_manager import CacheManager
from authcache.core.cache.models import CacheStats
from authcache.core.structlog_logger import StructlogMixin, get_struct_logger
from authcache.metrics.models import MetricsSnapshot
from authcache.metrics.monitor import PerformanceMonitor
from authcache.navigation.models import Prediction
from authcache.navigation.prefetcher import (
    BundleLoader,
    PredictivePrefetcher,
    RouteLoader,
)
from authcache.navigation.tracker import NavigationTracker
from authcache.navigation.transition_model import TransitionModel


logger = get_struct_logger(__name__)


class AuthCacheEngine(StructlogMixin):
    """One explicitly constructed instance per application.

    The router calls ``on_navigation`` after every successful route change;
    authorization checks go through ``authorize``; the authorization service
    calls the ``invalidate*`` methods when it mutates roles or permissions.
    """

    def __init__(
        self,
        settings: AuthCacheSettings,
        cache: CacheManager,
        model: TransitionModel,
        tracker: NavigationTracker,
        prefetcher: PredictivePrefetcher,
        monitor: PerformanceMonitor,
        loader: RouteLoader,
    ):
        super().__init__()
        self.settings = settings
        self.cache = cache
        self.model = model
        self.tracker = tracker
        self.prefetcher = prefetcher
        self.monitor = monitor
        self.loader = loader

    def start_session(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
        initial_routes: Iterable[str] | None = None,
    ) -> str:
        """Start a navigation session for a user and make it current.

        Bundles for ``initial_routes`` (or the configured
        ``prefetch.initial_routes``) are preloaded in the background, which
        needs a running event loop when a bundle loader is configured.
        """
        session_id = self.tracker.start_session(session_id=session_id, user_id=user_id)
        self.prefetcher.user_id = user_id
        routes = list(
            self.settings.prefetch.initial_routes
            if initial_routes is None
            else initial_routes
        )
        self.prefetcher.preload_bundles(routes)
        self.logger.info(
            "session_started",
            session_id=session_id,
            user_id=user_id,
            initial_routes=len(routes),
        )
        return session_id

    def end_session(self) -> None:
        """End the current session, cancelling its prefetches.

        The aggregated transition model is saved when a state path is
        configured; navigation events themselves are discarded.
        """
        self.prefetcher.cancel_all()
        discarded = self.tracker.end_session()
        self.prefetcher.user_id = None
        self.save_model()
        self.logger.info("session_ended", events=discarded)

    def on_navigation(self, route: str) -> list[Prediction]:
        """Router hook: record the navigation, then schedule prefetches.

        Must be called from within a running event loop.
        """
        with self.monitor.track("navigation"):
            self.tracker.record(route)
            return self.prefetcher.evaluate(route)

    async def authorize(self, key: str, loader: RouteLoader | None = None) -> Any:
        """Return authorization data for ``key``, loading it once on a miss.

        Raises:
            LoaderError: If the loader failed
        """
        async with self.monitor.track_async("authorize"):
            return await self.cache.warm(key, partial(loader or self.loader, key))

    async def invalidate(self, key: str) -> bool:
        return await self.cache.invalidate(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        return await self.cache.invalidate_prefix(prefix)

    async def invalidate_user(self, user_id: str) -> int:
        removed = await self.cache.invalidate_user(user_id)
        self.logger.info("user_cache_invalidated", user_id=user_id, removed=removed)
        return removed

    def snapshot(self) -> MetricsSnapshot:
        return self.monitor.snapshot()

    def cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def save_model(self) -> bool:
        """Persist the transition model if a state path is configured."""
        path = self.settings.navigation.model_state_path
        if path is None:
            return False
        try:
            self.model.save(path)
        except OSError as e:
            self.log_error_with_context("model_save_failed", e, path=str(path))
            return False
        return True

    async def shutdown(self) -> None:
        """Cancel prefetches, save the model and release the durable backend."""
        self.prefetcher.cancel_all()
        await self.prefetcher.drain()
        if self.tracker.current_session is not None:
            self.end_session()
        else:
            self.save_model()
        await self.cache.close()

        backend = self.cache.durable.backend if self.cache.durable else None
        close = getattr(backend, "close", None)
        if callable(close):
            close()
        self.logger.debug("engine_shutdown")


def create_engine(
    settings: AuthCacheSettings | None = None,
    loader: RouteLoader | None = None,
    bundle_loader: BundleLoader | None = None,
    backend: PersistenceBackend | None = None,
    clock: Callable[[], float] | None = None,
) -> AuthCacheEngine:
    """Build an engine from settings.

    Args:
        settings: Application settings; defaults plus environment when omitted
        loader: Authorization loader called with a cache key
        bundle_loader: Optional code-splitting runtime for route preloads
        backend: Persistence backend overriding ``settings.durable``
        clock: Time source shared by every component

    Returns:
        Configured engine

    Raises:
        ValueError: If no loader is given
    """
    if loader is None:
        raise ValueError("An authorization loader is required")

    settings = settings or AuthCacheSettings()
    clock = clock or time.time
    monitor = PerformanceMonitor()
    cache = create_cache_manager(settings, backend=backend, clock=clock, monitor=monitor)

    model = TransitionModel(decay_interval=settings.navigation.decay_interval, clock=clock)
    state_path = settings.navigation.model_state_path
    if state_path is not None:
        try:
            model.load(state_path)
        except (OSError, ValueError) as e:
            logger.warning(
                "model_load_failed", path=str(state_path), error=str(e)
            )

    tracker = NavigationTracker(
        model,
        max_history=settings.navigation.max_history,
        monitor=monitor,
        count_self_transitions=settings.navigation.count_self_transitions,
        clock=clock,
    )
    prefetcher = PredictivePrefetcher(
        model,
        cache,
        loader,
        bundle_loader=bundle_loader,
        monitor=monitor,
        top_k=settings.prefetch.top_k,
        threshold=settings.prefetch.threshold,
        max_concurrent=settings.prefetch.max_concurrent,
        delay_seconds=settings.prefetch.delay_seconds,
        enabled=settings.prefetch.enabled,
    )
    return AuthCacheEngine(
        settings=settings,
        cache=cache,
        model=model,
        tracker=tracker,
        prefetcher=prefetcher,
        monitor=monitor,
        loader=loader,
    )
