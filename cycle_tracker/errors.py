"""Central error types used across the application."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import Trip


class TrackerError(RuntimeError):
    """Base error for trip recording failures."""


class InvalidTransitionError(TrackerError):
    """Raised when a lifecycle operation is not allowed in the current state."""


class TripTooShortError(TrackerError):
    """Raised when a trip below the minimum distance is asked to finish."""

    def __init__(self, distance_km: float, minimum_km: float) -> None:
        super().__init__(
            f"Trip distance {distance_km:.3f} km is below the {minimum_km:.3f} km minimum"
        )
        self.distance_km = distance_km
        self.minimum_km = minimum_km


class HistorySaveError(TrackerError):
    """Raised when the trip history store rejects a sealed trip.

    The sealed trip is attached so the caller can retry the hand-off.
    """

    def __init__(self, trip: "Trip", message: str) -> None:
        super().__init__(message)
        self.trip = trip


class SnapshotError(TrackerError):
    """Raised when an in-flight trip snapshot cannot be decoded."""


class GeocodingError(TrackerError):
    """Raised when a reverse geocoding lookup fails."""


__all__ = [
    "TrackerError",
    "InvalidTransitionError",
    "TripTooShortError",
    "HistorySaveError",
    "SnapshotError",
    "GeocodingError",
]
