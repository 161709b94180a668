"""Speculative cache warming and bundle preloading for predicted routes."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from authcache.core.cache.cache_manager import CacheManager
from authcache.core.cache.loaders import call_loader
from authcache.core.cache.models import CacheKey
from authcache.core.errors import PrefetchError
from authcache.core.structlog_logger import StructlogMixin
from authcache.navigation.models import Prediction
from authcache.navigation.transition_model import TransitionModel


if TYPE_CHECKING:
    from authcache.metrics.monitor import PerformanceMonitor


RouteLoader = Callable[[str], Awaitable[Any] | Any]

ANONYMOUS_USER = "anonymous"


@runtime_checkable
class BundleLoader(Protocol):
    """Code-splitting runtime hook.

    ``preload`` is assumed idempotent and safe to call speculatively; the
    runtime deduplicates repeated requests itself.
    """

    def preload(self, route_id: str) -> Awaitable[None] | None: ...


class PredictivePrefetcher(StructlogMixin):
    """Warms the cache and preloads bundles for likely next routes.

    ``evaluate`` schedules work and returns immediately; prefetches run as
    tasks on the running event loop. Failures are logged and counted, never
    raised, and never retried within a cycle. A prefetch whose route drops out
    of the predictions is cancelled; the shared cache load it joined keeps
    running for any other waiter.
    """

    def __init__(
        self,
        model: TransitionModel,
        cache: CacheManager,
        loader: RouteLoader,
        bundle_loader: BundleLoader | None = None,
        monitor: "PerformanceMonitor | None" = None,
        top_k: int = 3,
        threshold: float = 0.3,
        max_concurrent: int = 3,
        delay_seconds: float = 0.0,
        enabled: bool = True,
        key_for: Callable[[str], str] | None = None,
        component_for: Callable[[str], str] | None = None,
    ):
        """Initialize prefetcher.

        Args:
            model: Transition model queried for predictions
            cache: Cache manager whose ``warm`` performs the data prefetch
            loader: Authorization loader, called with the cache key
            bundle_loader: Optional code-splitting runtime
            monitor: Optional performance monitor
            top_k: Predictions considered per cycle
            threshold: Minimum probability for a route to be prefetched
            max_concurrent: Maximum prefetches running at once
            delay_seconds: Wait before a scheduled prefetch starts
            enabled: When False, ``evaluate`` does nothing
            key_for: Maps a route to its cache key; defaults to the
                permission key of the current user for that route
            component_for: Maps a route to its bundle id; defaults to the route
        """
        super().__init__()
        self.model = model
        self.cache = cache
        self.loader = loader
        self.bundle_loader = bundle_loader
        self.monitor = monitor
        self.top_k = top_k
        self.threshold = threshold
        self.max_concurrent = max_concurrent
        self.delay_seconds = delay_seconds
        self.enabled = enabled
        self.user_id: str | None = None
        self._key_for = key_for
        self._component_for = component_for
        self._active: dict[str, asyncio.Task[None]] = {}
        self._preloads: set[asyncio.Task[None]] = set()
        self.completed_count = 0
        self.failure_count = 0
        self.cancelled_count = 0

    def key_for(self, route: str) -> str:
        if self._key_for is not None:
            return self._key_for(route)
        return CacheKey.permission(self.user_id or ANONYMOUS_USER, route)

    def component_for(self, route: str) -> str:
        if self._component_for is not None:
            return self._component_for(route)
        return route

    def active_routes(self) -> list[str]:
        return [route for route, task in self._active.items() if not task.done()]

    def evaluate(self, current_route: str) -> list[Prediction]:
        """Schedule prefetches for confident predictions from ``current_route``.

        Must be called from within a running event loop.

        Returns:
            The predictions at or above the threshold, scheduled or already
            in flight
        """
        if not self.enabled:
            return []

        predictions = self.model.predict(current_route, self.top_k)
        candidates = [p for p in predictions if p.probability >= self.threshold]
        if self.monitor is not None:
            self.monitor.record_predictions(p.route for p in candidates)

        wanted = {p.route for p in candidates}
        for route in list(self._active):
            if route not in wanted:
                self._cancel(route)

        loop = asyncio.get_running_loop()
        for prediction in candidates:
            running = self._active.get(prediction.route)
            if running is not None and not running.done():
                continue
            active = len(self.active_routes())
            if active >= self.max_concurrent:
                self.logger.debug(
                    "prefetch_skipped",
                    route=prediction.route,
                    reason="max_concurrent",
                    active=active,
                )
                break

            task = loop.create_task(
                self._prefetch(prediction.route),
                name=f"authcache-prefetch:{prediction.route}",
            )
            self._active[prediction.route] = task
            task.add_done_callback(partial(self._release, prediction.route))
            self.logger.debug(
                "prefetch_scheduled",
                route=prediction.route,
                probability=round(prediction.probability, 3),
                from_route=current_route,
            )

        return candidates

    def preload_bundles(self, routes: Iterable[str]) -> asyncio.Task[None] | None:
        """Schedule bundle preloads for the routes a new session usually opens.

        Only the code-splitting runtime is involved; no authorization data is
        loaded. Must be called from within a running event loop when there is
        anything to preload.

        Returns:
            The scheduled task, or None when disabled, without a bundle loader
            or with no routes
        """
        unique = list(dict.fromkeys(routes))
        if not self.enabled or self.bundle_loader is None or not unique:
            return None

        task = asyncio.get_running_loop().create_task(
            self._preload_all(unique), name="authcache-initial-preload"
        )
        self._preloads.add(task)
        task.add_done_callback(self._preloads.discard)
        return task

    def cancel_all(self) -> int:
        """Cancel every active prefetch and pending initial preload.

        Returns:
            Number of prefetches cancelled
        """
        routes = list(self._active)
        for route in routes:
            self._cancel(route)
        preloads = [task for task in self._preloads if not task.done()]
        for task in preloads:
            task.cancel()
        return len(routes) + len(preloads)

    async def drain(self) -> None:
        """Wait until every active prefetch and initial preload has finished."""
        while pending := [
            t for t in [*self._active.values(), *self._preloads] if not t.done()
        ]:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _prefetch(self, route: str) -> None:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        key = self.key_for(route)
        try:
            await self.cache.warm(key, partial(self.loader, key), speculative=True)
        except Exception as e:
            self._record_failure(route, "cache_warm", e)

        await self._preload_bundle(route)
        self.completed_count += 1

    async def _preload_all(self, routes: list[str]) -> None:
        for route in routes:
            await self._preload_bundle(route)
        self.logger.debug("initial_bundles_preloaded", routes=routes)

    async def _preload_bundle(self, route: str) -> None:
        if self.bundle_loader is None:
            return
        component = self.component_for(route)
        try:
            await call_loader(partial(self.bundle_loader.preload, component))
        except Exception as e:
            self._record_failure(route, "bundle_preload", e)

    def _cancel(self, route: str) -> None:
        task = self._active.pop(route, None)
        if task is not None and not task.done():
            task.cancel()
            self.cancelled_count += 1
            self.logger.debug("prefetch_cancelled", route=route)

    def _release(self, route: str, task: asyncio.Task[None]) -> None:
        if self._active.get(route) is task:
            del self._active[route]

    def _record_failure(self, route: str, stage: str, error: Exception) -> None:
        self.failure_count += 1
        if self.monitor is not None:
            self.monitor.record_prefetch_failure()
        failure = PrefetchError(route, f"Prefetch of {route} failed during {stage}")
        failure.__cause__ = error
        self.log_error_with_context(
            "prefetch_failed", failure, route=route, stage=stage, cause=str(error)
        )

