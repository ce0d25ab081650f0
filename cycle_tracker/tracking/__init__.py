"""Trip recording: sample filtering, distance, lifecycle and finalisation."""

from .distance import DistanceAccumulator, display_speed_kmh, speed_kmh
from .engine import EngineConfig, TripEngine
from .filters import SampleFilter
from .finalizer import TripFinalizer

__all__ = [
    "DistanceAccumulator",
    "display_speed_kmh",
    "speed_kmh",
    "EngineConfig",
    "TripEngine",
    "SampleFilter",
    "TripFinalizer",
]
