"""Passive performance monitor for the cache and the prefetcher."""

import time
from collections import deque
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import asynccontextmanager, contextmanager

from authcache.metrics.models import (
    MetricsSnapshot,
    OperationStats,
    OperationTiming,
    TrendDirection,
)


TREND_THRESHOLD = 0.1


class PerformanceMonitor:
    """Observational counters for hit rate, evictions and prediction accuracy.

    Counters are read through properties only. The ``record_*`` hooks are
    called by the cache manager, navigation tracker and prefetcher; the monitor
    never influences their behavior.

    A prediction counts as correct when the next navigation lands on one of the
    routes predicted in the previous cycle.
    """

    def __init__(self, max_timings_per_operation: int = 1000):
        self.max_timings_per_operation = max_timings_per_operation
        self.reset()

    def reset(self) -> None:
        """Reset all counters and timings."""
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._navigations = 0
        self._predictions_made = 0
        self._predictions_correct = 0
        self._prefetch_failures = 0
        self._pending_predictions: frozenset[str] = frozenset()
        self._timings: dict[str, deque[OperationTiming]] = {}

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def evictions(self) -> int:
        return self._evictions

    @property
    def navigations(self) -> int:
        return self._navigations

    @property
    def predictions_made(self) -> int:
        return self._predictions_made

    @property
    def predictions_correct(self) -> int:
        return self._predictions_correct

    @property
    def prefetch_failures(self) -> int:
        return self._prefetch_failures

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return (self._hits / total) * 100.0

    @property
    def prediction_accuracy(self) -> float:
        """Correct predictions as a percentage of predictions made."""
        if self._predictions_made == 0:
            return 0.0
        return (self._predictions_correct / self._predictions_made) * 100.0

    # Hooks

    def record_hit(self) -> None:
        self._hits += 1

    def record_miss(self) -> None:
        self._misses += 1

    def record_evictions(self, count: int = 1) -> None:
        self._evictions += count

    def record_predictions(self, routes: Iterable[str]) -> None:
        """Register the routes predicted after the latest navigation."""
        predicted = frozenset(routes)
        self._predictions_made += len(predicted)
        self._pending_predictions = predicted

    def record_navigation(self, route: str) -> None:
        """Score the previous cycle's predictions against an actual navigation."""
        self._navigations += 1
        if route in self._pending_predictions:
            self._predictions_correct += 1
        self._pending_predictions = frozenset()

    def record_prefetch_failure(self) -> None:
        self._prefetch_failures += 1

    # Operation timing

    def record_operation(
        self, name: str, duration_ms: float, success: bool = True
    ) -> None:
        """Store one timing, keeping at most ``max_timings_per_operation``."""
        timings = self._timings.get(name)
        if timings is None:
            timings = deque(maxlen=self.max_timings_per_operation)
            self._timings[name] = timings
        timings.append(
            OperationTiming(name=name, duration_ms=max(duration_ms, 0.0), success=success)
        )

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """Time a block; an exception marks the run failed and propagates."""
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_operation(name, (time.perf_counter() - start) * 1000, success)

    @asynccontextmanager
    async def track_async(self, name: str) -> AsyncIterator[None]:
        """Async variant of ``track`` for blocks containing awaits."""
        start = time.perf_counter()
        success = False
        try:
            yield
            success = True
        finally:
            self.record_operation(name, (time.perf_counter() - start) * 1000, success)

    def operation_names(self) -> list[str]:
        return sorted(self._timings)

    def operation_stats(self, name: str) -> OperationStats:
        """Aggregate the recorded timings of one operation."""
        timings = list(self._timings.get(name, ()))
        if not timings:
            return OperationStats(name=name)

        durations = [t.duration_ms for t in timings]
        successes = sum(1 for t in timings if t.success)
        return OperationStats(
            name=name,
            count=len(timings),
            avg_duration_ms=sum(durations) / len(durations),
            min_duration_ms=min(durations),
            max_duration_ms=max(durations),
            success_rate=(successes / len(timings)) * 100.0,
            trend=self._trend(durations),
        )

    def slowest_operations(self, limit: int = 10) -> list[OperationTiming]:
        """The slowest individual timings across all operations."""
        all_timings = [t for timings in self._timings.values() for t in timings]
        return sorted(all_timings, key=lambda t: t.duration_ms, reverse=True)[:limit]

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=self.hit_rate,
            navigations=self._navigations,
            predictions_made=self._predictions_made,
            predictions_correct=self._predictions_correct,
            prediction_accuracy=self.prediction_accuracy,
            prefetch_failures=self._prefetch_failures,
            operations={name: self.operation_stats(name) for name in self._timings},
        )

    @staticmethod
    def _trend(durations: list[float]) -> TrendDirection:
        quarter = len(durations) // 4
        if quarter == 0:
            return TrendDirection.STABLE

        recent = durations[-quarter:]
        previous = durations[-2 * quarter : -quarter]
        recent_avg = sum(recent) / len(recent)
        previous_avg = sum(previous) / len(previous)

        if recent_avg < previous_avg * (1 - TREND_THRESHOLD):
            return TrendDirection.IMPROVING
        if recent_avg > previous_avg * (1 + TREND_THRESHOLD):
            return TrendDirection.DEGRADING
        return TrendDirection.STABLE
