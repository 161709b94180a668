"""Metrics models for cache and prediction diagnostics."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from authcache.models.base import AuthCacheBaseModel


class TrendDirection(str, Enum):
    """Direction of recent operation durations."""

    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class OperationTiming(AuthCacheBaseModel):
    """A single timed operation."""

    name: str
    duration_ms: float = Field(ge=0)
    success: bool = True
    recorded_at: datetime = Field(default_factory=datetime.now)


class OperationStats(AuthCacheBaseModel):
    """Aggregated timings for one operation name."""

    name: str = Field(description="Operation name")
    count: int = Field(default=0, ge=0, description="Recorded executions")
    avg_duration_ms: float = Field(default=0.0, ge=0)
    min_duration_ms: float = Field(default=0.0, ge=0)
    max_duration_ms: float = Field(default=0.0, ge=0)
    success_rate: float = Field(
        default=0.0, ge=0, le=100, description="Successful executions as a percentage"
    )
    trend: TrendDirection = Field(
        default=TrendDirection.STABLE,
        description="Last quarter of durations compared with the quarter before",
    )


class MetricsSnapshot(AuthCacheBaseModel):
    """Point-in-time view of every monitor counter."""

    taken_at: datetime = Field(default_factory=datetime.now)

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    hit_rate: float = Field(default=0.0, description="Hit rate as a percentage")

    navigations: int = 0
    predictions_made: int = 0
    predictions_correct: int = 0
    prediction_accuracy: float = Field(
        default=0.0, description="Correct predictions as a percentage"
    )
    prefetch_failures: int = 0

    operations: dict[str, OperationStats] = Field(default_factory=dict)
