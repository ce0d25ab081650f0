"""Incremental distance and speed derivation from accepted fixes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import MIN_DISTANCE_DELTA_KM, MIN_SPEED_KMH
from ..geo import point_distance_km
from ..models import Point


def speed_kmh(speed_mps: float | None) -> float:
    """Convert a raw fix speed to km/h; negatives clamp to 0, None is 0."""

    if speed_mps is None:
        return 0.0
    return max(0.0, speed_mps * 3.6)


def display_speed_kmh(speed_mps: float | None, min_kmh: float = MIN_SPEED_KMH) -> float:
    """Speed shown to the rider; values below ``min_kmh`` are noise."""

    value = speed_kmh(speed_mps)
    return value if value >= min_kmh else 0.0


@dataclass(slots=True)
class DistanceStep:
    """Result of feeding one accepted point to the accumulator."""

    raw_delta_km: float
    counted_km: float


class DistanceAccumulator:
    """Turns accepted points into counted distance.

    The reference point always advances to the newest sample, even when its
    delta is below the jitter threshold and therefore not counted.
    """

    def __init__(
        self,
        min_delta_km: float = MIN_DISTANCE_DELTA_KM,
        last_point: Optional[Point] = None,
    ) -> None:
        self.min_delta_km = min_delta_km
        self._last_point = last_point

    @property
    def last_point(self) -> Optional[Point]:
        return self._last_point

    def reseed(self, point: Optional[Point]) -> None:
        """Reset the reference point (used when rehydrating a saved trip)."""

        self._last_point = point

    def delta(self, last_accepted: Optional[Point], point: Point) -> float:
        """Rounded great-circle delta in km; 0 without a reference point."""

        if last_accepted is None:
            return 0.0
        return point_distance_km(last_accepted, point)

    def add(self, point: Point) -> DistanceStep:
        raw = self.delta(self._last_point, point)
        self._last_point = point
        counted = raw if raw >= self.min_delta_km else 0.0
        return DistanceStep(raw_delta_km=raw, counted_km=counted)
