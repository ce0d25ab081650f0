from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .clock import active_seconds, elapsed_seconds
from .utils import format_duration, format_speed, parse_iso_datetime


class TripState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class Point:
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_value(cls, value: Any) -> "Point":
        """Build a point from a ``{latitude, longitude}`` mapping or a pair."""

        if isinstance(value, dict):
            return cls(float(value["latitude"]), float(value["longitude"]))
        lat, lon = value
        return cls(float(lat), float(lon))


@dataclass(frozen=True, slots=True)
class LocationSample:
    """A single raw GPS fix as delivered by the location provider."""

    latitude: float
    longitude: float
    timestamp: datetime
    accuracy_m: float | None = None
    speed_mps: float | None = None

    @property
    def point(self) -> Point:
        return Point(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class Trip:
    """Immutable trip value; every transition produces a new instance."""

    id: str
    start_time: datetime
    coordinates: Tuple[Point, ...] = ()
    distance_km: float = 0.0
    paused_seconds: float = 0.0
    pause_started_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    name: str = ""
    max_speed_kmh: float = 0.0
    avg_speed_kmh: float = 0.0
    calories_kcal: int = 0
    start_place: str = ""
    end_place: str = ""

    @property
    def is_sealed(self) -> bool:
        return self.end_time is not None

    def _reference(self, now: Optional[datetime]) -> datetime:
        if self.end_time is not None:
            return self.end_time
        if now is None:
            raise ValueError("now is required for a trip that is still in progress")
        return now

    def duration_seconds(self, now: Optional[datetime] = None) -> int:
        """Total elapsed seconds; sealed trips are measured up to ``end_time``."""

        return elapsed_seconds(self.start_time, self._reference(now))

    def active_duration_seconds(self, now: Optional[datetime] = None) -> int:
        return active_seconds(
            self.start_time,
            self._reference(now),
            self.paused_seconds,
            self.pause_started_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "pause_started_at": (
                self.pause_started_at.isoformat() if self.pause_started_at else None
            ),
            "coordinates": [p.to_dict() for p in self.coordinates],
            "distance_km": self.distance_km,
            "paused_seconds": self.paused_seconds,
            "max_speed_kmh": self.max_speed_kmh,
            "avg_speed_kmh": self.avg_speed_kmh,
            "calories_kcal": self.calories_kcal,
            "start_place": self.start_place,
            "end_place": self.end_place,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Trip":
        """Rebuild a trip from :meth:`to_dict` output.

        Raises ``ValueError`` (or ``KeyError``, ``TypeError``, ``OverflowError``)
        on malformed input.
        """

        start_time = parse_iso_datetime(payload["start_time"])
        if start_time is None:
            raise ValueError(f"Invalid start_time: {payload['start_time']!r}")
        raw_coordinates = payload.get("coordinates") or []
        if not isinstance(raw_coordinates, list):
            raise ValueError("coordinates must be a list")
        return cls(
            id=str(payload["id"]),
            start_time=start_time,
            coordinates=tuple(Point.from_value(item) for item in raw_coordinates),
            distance_km=float(payload.get("distance_km") or 0.0),
            paused_seconds=float(payload.get("paused_seconds") or 0.0),
            pause_started_at=parse_iso_datetime(payload.get("pause_started_at")),
            end_time=parse_iso_datetime(payload.get("end_time")),
            name=str(payload.get("name") or ""),
            max_speed_kmh=float(payload.get("max_speed_kmh") or 0.0),
            avg_speed_kmh=float(payload.get("avg_speed_kmh") or 0.0),
            calories_kcal=int(payload.get("calories_kcal") or 0),
            start_place=str(payload.get("start_place") or ""),
            end_place=str(payload.get("end_place") or ""),
        )


@dataclass(frozen=True, slots=True)
class TrackingView:
    """Read model pushed to the presentation sink after every mutation."""

    state: TripState
    trip_id: str | None = None
    latest_position: Point | None = None
    path: Tuple[Point, ...] = ()
    distance_km: float = 0.0
    duration_seconds: int = 0
    active_duration_seconds: int = 0
    current_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0

    @property
    def is_paused(self) -> bool:
        return self.state is TripState.PAUSED

    def title(self) -> str:
        return "Ride Paused" if self.is_paused else "Tracking Active"

    def status_line(self) -> str:
        """Compact ``distance • duration • speed`` summary for notifications."""

        return " • ".join(
            (
                f"{self.distance_km:.2f} km",
                format_duration(self.active_duration_seconds),
                format_speed(self.max_speed_kmh),
            )
        )


class FinishStatus(str, Enum):
    FINISHED = "finished"
    TOO_SHORT = "too_short"
    HISTORY_SAVE_FAILED = "history_save_failed"


@dataclass(slots=True)
class FinishResult:
    """Outcome of finishing a trip.

    ``trip`` is the sealed trip for ``FINISHED`` / ``HISTORY_SAVE_FAILED``
    and the untouched in-progress trip for ``TOO_SHORT``.
    """

    status: FinishStatus
    trip: Trip | None = None
    error: Exception | None = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is FinishStatus.FINISHED

    def raise_for_status(self) -> None:
        """Raise the attached domain error unless the trip was finished."""

        if self.ok:
            return
        if self.error is not None:
            raise self.error
        raise RuntimeError(f"Finish failed with status {self.status.value}")
