"""Sealing of finished trips and hand-off to the trip history store."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ..config import CALORIES_PER_KM, DEFAULT_TRIP_NAME_FORMAT
from ..errors import HistorySaveError
from ..geo import path_length_km
from ..geocoding import PlaceResolver
from ..models import FinishResult, FinishStatus, Trip
from ..persistence.stores import TripHistoryStore


def default_trip_name(start_time: datetime) -> str:
    return DEFAULT_TRIP_NAME_FORMAT.format(date=start_time.date().isoformat())


def average_speed_kmh(distance_km: float, active_seconds: int) -> float:
    if active_seconds <= 0:
        return 0.0
    return distance_km / (active_seconds / 3600.0)


def estimate_calories(distance_km: float, per_km: float = CALORIES_PER_KM) -> int:
    return int(math.floor(distance_km * per_km + 0.5))


class TripFinalizer:
    """Produces the immutable sealed trip and saves it to history."""

    def __init__(
        self,
        history: TripHistoryStore,
        *,
        place_resolver: Optional[PlaceResolver] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._history = history
        self._place_resolver = place_resolver
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def seal(self, trip: Trip, now: datetime, name: Optional[str] = None) -> Trip:
        """Return ``trip`` closed at ``now`` with its derived statistics.

        Any open pause interval must already have been closed by the caller.
        """

        sealed = replace(trip, end_time=now, pause_started_at=None)
        active = sealed.active_duration_seconds()
        sealed = replace(
            sealed,
            name=(name or "").strip() or default_trip_name(trip.start_time),
            avg_speed_kmh=average_speed_kmh(sealed.distance_km, active),
            calories_kcal=estimate_calories(sealed.distance_km),
        )
        if self._place_resolver is not None and sealed.coordinates:
            start = self._place_resolver.resolve(sealed.coordinates[0])
            end = self._place_resolver.resolve(sealed.coordinates[-1])
            sealed = replace(sealed, start_place=start.name, end_place=end.name)
        self._log.info(
            "Sealed trip id=%s name=%r distance=%.3fkm path=%.3fkm active=%ss avg=%.1fkm/h",
            sealed.id,
            sealed.name,
            sealed.distance_km,
            path_length_km(sealed.coordinates),
            active,
            sealed.avg_speed_kmh,
        )
        return sealed

    def hand_off(self, trip: Trip) -> FinishResult:
        """Save a sealed trip; failures come back as ``HISTORY_SAVE_FAILED``."""

        try:
            self._history.save(trip)
        except Exception as exc:
            self._log.error(
                "History save failed for trip id=%s: %s", trip.id, exc, exc_info=True
            )
            error = HistorySaveError(trip, f"Failed to save trip {trip.id}: {exc}")
            error.__cause__ = exc
            return FinishResult(
                status=FinishStatus.HISTORY_SAVE_FAILED, trip=trip, error=error
            )
        return FinishResult(status=FinishStatus.FINISHED, trip=trip)
