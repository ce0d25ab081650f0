"""Cycle Tracker trip recording engine package."""

from .errors import (
    HistorySaveError,
    InvalidTransitionError,
    TrackerError,
    TripTooShortError,
)
from .location import LifecycleSignal, LocationChannel
from .models import (
    FinishResult,
    FinishStatus,
    LocationSample,
    Point,
    TrackingView,
    Trip,
    TripState,
)
from .tracking import EngineConfig, TripEngine

__all__ = [
    "TripEngine",
    "EngineConfig",
    "Trip",
    "TripState",
    "Point",
    "LocationSample",
    "TrackingView",
    "FinishResult",
    "FinishStatus",
    "LifecycleSignal",
    "LocationChannel",
    "TrackerError",
    "InvalidTransitionError",
    "TripTooShortError",
    "HistorySaveError",
]
