"""Passive metrics for cache efficiency and prediction accuracy."""

from authcache.metrics.models import (
    MetricsSnapshot,
    OperationStats,
    OperationTiming,
    TrendDirection,
)
from authcache.metrics.monitor import PerformanceMonitor


__all__ = [
    "MetricsSnapshot",
    "OperationStats",
    "OperationTiming",
    "PerformanceMonitor",
    "TrendDirection",
]
