"""Navigation tracking, transition prediction and predictive prefetch."""

from authcache.navigation.models import NavigationEvent, Prediction, TransitionRecord
from authcache.navigation.prefetcher import (
    BundleLoader,
    PredictivePrefetcher,
    RouteLoader,
)
from authcache.navigation.tracker import NavigationTracker
from authcache.navigation.transition_model import TransitionModel


__all__ = [
    "BundleLoader",
    "NavigationEvent",
    "NavigationTracker",
    "Prediction",
    "PredictivePrefetcher",
    "RouteLoader",
    "TransitionModel",
    "TransitionRecord",
]
