"""Key-value snapshot stores and trip history stores.

Snapshot stores hold a single opaque blob per key and know nothing about its
layout. History stores keep sealed trips keyed by id with upsert semantics, so
repeating a save after a failure never duplicates a trip.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import polyline

from ..config import HISTORY_DIR, HISTORY_POLYLINE_PRECISION, SNAPSHOT_DIR
from ..models import Trip

_LOGGER = logging.getLogger(__name__)


def _resolve_dir(path: str | Path) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else Path.cwd() / candidate


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with temp_path.open("w", encoding="utf-8") as handle:
        handle.write(text)
    temp_path.replace(path)


# ---------------------------------------------------------------------------
# Snapshot stores
# ---------------------------------------------------------------------------
class SnapshotStore(Protocol):
    def get(self, key: str) -> Optional[str]:  # pragma: no cover - protocol
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover - protocol
        ...

    def delete(self, key: str) -> None:  # pragma: no cover - protocol
        ...


class InMemorySnapshotStore:
    """Dict-backed store, shared between engine instances to simulate restarts."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data


class FileSnapshotStore:
    """One file per key under ``base_dir``, replaced atomically on write."""

    def __init__(self, base_dir: str | Path = SNAPSHOT_DIR) -> None:
        self._base_dir = _resolve_dir(base_dir)
        self._lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, key: str) -> Path:
        return self._base_dir / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            _write_atomic(self._path(key), value)
        _LOGGER.debug("Snapshot written key=%s path=%s", key, self._path(key))

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Trip history stores
# ---------------------------------------------------------------------------
class TripHistoryStore(Protocol):
    def save(self, trip: Trip) -> None:  # pragma: no cover - protocol
        ...


def _newest_first(trips: List[Trip]) -> List[Trip]:
    return sorted(trips, key=lambda t: t.start_time, reverse=True)


class InMemoryTripHistoryStore:
    def __init__(self) -> None:
        self._trips: Dict[str, Trip] = {}

    def save(self, trip: Trip) -> None:
        self._trips[trip.id] = trip

    def get(self, trip_id: str) -> Optional[Trip]:
        return self._trips.get(trip_id)

    def list_trips(self) -> List[Trip]:
        return _newest_first(list(self._trips.values()))

    def delete(self, trip_id: str) -> bool:
        return self._trips.pop(trip_id, None) is not None

    def clear(self) -> None:
        self._trips.clear()

    def __len__(self) -> int:
        return len(self._trips)


def trip_to_document(trip: Trip, precision: int = HISTORY_POLYLINE_PRECISION) -> Dict[str, Any]:
    """History document: trip fields with the path as an encoded polyline."""

    document = trip.to_dict()
    points = [(p.latitude, p.longitude) for p in trip.coordinates]
    document["coordinates"] = polyline.encode(points, precision) if points else ""
    document["polyline_precision"] = precision
    document["point_count"] = len(points)
    if trip.is_sealed:
        document["duration_seconds"] = trip.duration_seconds()
        document["active_duration_seconds"] = trip.active_duration_seconds()
    return document


def trip_from_document(document: Dict[str, Any]) -> Trip:
    payload = dict(document)
    encoded = payload.get("coordinates") or ""
    if isinstance(encoded, str):
        precision = int(payload.get("polyline_precision") or HISTORY_POLYLINE_PRECISION)
        decoded = polyline.decode(encoded, precision) if encoded else []
        payload["coordinates"] = [[lat, lon] for lat, lon in decoded]
    return Trip.from_dict(payload)


class JsonTripHistoryStore:
    """Sealed trips persisted as ``<trip id>.json`` documents."""

    def __init__(
        self,
        base_dir: str | Path = HISTORY_DIR,
        *,
        precision: int = HISTORY_POLYLINE_PRECISION,
    ) -> None:
        self._base_dir = _resolve_dir(base_dir)
        self._precision = precision
        self._lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, trip_id: str) -> Path:
        safe_id = "".join(ch for ch in trip_id if ch.isalnum() or ch in "-_")
        if not safe_id:
            raise ValueError(f"Unusable trip id {trip_id!r}")
        return self._base_dir / f"{safe_id}.json"

    def save(self, trip: Trip) -> None:
        document = trip_to_document(trip, self._precision)
        path = self._path(trip.id)
        with self._lock:
            _write_atomic(path, json.dumps(document, ensure_ascii=True, indent=2))
        _LOGGER.info("Trip saved to history id=%s path=%s", trip.id, path)

    def _read(self, path: Path) -> Optional[Trip]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                return trip_from_document(json.load(handle))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError, OverflowError) as exc:
            _LOGGER.error("Failed reading history file %s: %s", path, exc)
            return None

    def get(self, trip_id: str) -> Optional[Trip]:
        return self._read(self._path(trip_id))

    def list_trips(self) -> List[Trip]:
        if not self._base_dir.exists():
            return []
        trips = [
            trip
            for trip in (self._read(path) for path in self._base_dir.glob("*.json"))
            if trip is not None
        ]
        return _newest_first(trips)

    def delete(self, trip_id: str) -> bool:
        path = self._path(trip_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        _LOGGER.info("Trip deleted from history id=%s", trip_id)
        return True

    def clear(self) -> None:
        with self._lock:
            for path in self._base_dir.glob("*.json"):
                path.unlink(missing_ok=True)
        _LOGGER.info("Trip history cleared dir=%s", self._base_dir)


__all__ = [
    "SnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "TripHistoryStore",
    "InMemoryTripHistoryStore",
    "JsonTripHistoryStore",
    "trip_to_document",
    "trip_from_document",
]
