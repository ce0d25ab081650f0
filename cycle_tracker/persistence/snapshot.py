"""Durable snapshot of the in-flight trip.

The snapshot is the minimal state needed to rebuild a trip after the process
was suspended or killed: the trip value, whether it was paused and when the
snapshot was taken. Sealed trips still waiting for a history save are kept
under a separate key by :class:`PendingHandOffs`. Snapshot writes are best
effort. A failed write is logged and the latest value is written again at
the next trigger.

Writes go through :class:`CoalescingWriter`, which keeps at most one write in
flight. Requests arriving while a write is running replace the pending value
instead of queueing, and a clear request travels through the same slot so a
slow save can never land after it and resurrect a dropped trip.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, List, Optional

from ..clock import Clock, system_clock
from ..config import PENDING_HANDOFF_KEY, SNAPSHOT_FORMAT_VERSION, SNAPSHOT_KEY
from ..errors import SnapshotError
from ..models import Trip
from ..utils import json_dumps_sorted, parse_iso_datetime
from .stores import SnapshotStore

_CLEAR = object()


@dataclass(frozen=True, slots=True)
class LoadedSnapshot:
    trip: Trip
    is_paused: bool
    saved_at: datetime


def encode_snapshot(trip: Trip, is_paused: bool, saved_at: datetime) -> str:
    return json_dumps_sorted(
        {
            "version": SNAPSHOT_FORMAT_VERSION,
            "saved_at": saved_at,
            "is_paused": is_paused,
            "trip": trip.to_dict(),
        }
    )


def decode_snapshot(blob: str) -> LoadedSnapshot:
    """Parse a snapshot blob, raising :class:`SnapshotError` when unusable."""

    try:
        payload = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise SnapshotError("Snapshot payload must be an object")
    version = payload.get("version")
    if version != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version {version!r}")
    trip_payload = payload.get("trip")
    if not isinstance(trip_payload, dict):
        raise SnapshotError("Snapshot is missing the trip document")
    try:
        trip = Trip.from_dict(trip_payload)
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise SnapshotError(f"Snapshot trip is malformed: {exc}") from exc
    saved_at = parse_iso_datetime(payload.get("saved_at"))
    if saved_at is None:
        raise SnapshotError("Snapshot is missing saved_at")
    is_paused = bool(payload.get("is_paused"))
    if is_paused and trip.pause_started_at is None:
        # A paused trip without a pause instant is taken as paused since saved_at.
        trip = replace(trip, pause_started_at=saved_at)
    return LoadedSnapshot(trip=trip, is_paused=is_paused, saved_at=saved_at)


class CoalescingWriter:
    """Single-slot writer: one operation in flight, latest request wins."""

    def __init__(
        self,
        apply: Callable[[Any], None],
        *,
        executor: Optional[Executor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._apply = apply
        self._executor = executor
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending: Any = None
        self._has_pending = False
        self._in_flight = False
        self.coalesced = 0
        self.failures = 0

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._in_flight or self._has_pending

    def submit(self, value: Any) -> None:
        with self._lock:
            if self._has_pending:
                self.coalesced += 1
            self._pending = value
            self._has_pending = True
            if self._in_flight:
                return
            self._in_flight = True
        self._dispatch()

    def _dispatch(self) -> None:
        if self._executor is None:
            self._drain()
            return
        future: Future = self._executor.submit(self._drain)
        future.add_done_callback(self._log_unexpected)

    def _log_unexpected(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:  # pragma: no cover - _drain handles its own errors
            self._log.error("Snapshot writer crashed: %s", exc)

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._has_pending:
                    self._in_flight = False
                    self._idle.notify_all()
                    return
                value = self._pending
                self._pending = None
                self._has_pending = False
            try:
                self._apply(value)
            except Exception as exc:
                self.failures += 1
                self._log.warning(
                    "Snapshot write failed (will retry at next trigger): %s", exc
                )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until no write is pending or in flight; False on timeout."""

        with self._idle:
            return self._idle.wait_for(
                lambda: not self._in_flight and not self._has_pending, timeout
            )


class SnapshotBridge:
    """Serialises the in-flight trip to a key-value snapshot store."""

    def __init__(
        self,
        store: SnapshotStore,
        *,
        key: str = SNAPSHOT_KEY,
        clock: Clock = system_clock,
        executor: Optional[Executor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._writer = CoalescingWriter(
            self._apply, executor=executor, logger=self._log
        )

    @property
    def key(self) -> str:
        return self._key

    @property
    def writer(self) -> CoalescingWriter:
        return self._writer

    def save(self, trip: Trip, is_paused: bool) -> None:
        blob = encode_snapshot(trip, is_paused, self._clock())
        self._writer.submit(blob)

    def clear(self) -> None:
        self._writer.submit(_CLEAR)

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self._writer.flush(timeout)

    def load(self) -> Optional[LoadedSnapshot]:
        """Return the stored snapshot, or None when absent or unreadable."""

        self._writer.flush()
        try:
            blob = self._store.get(self._key)
        except Exception as exc:
            self._log.warning("Snapshot store read failed key=%s: %s", self._key, exc)
            return None
        if blob is None:
            return None
        try:
            return decode_snapshot(blob)
        except SnapshotError as exc:
            self._log.warning("Ignoring unreadable snapshot key=%s: %s", self._key, exc)
            return None

    def _apply(self, value: Any) -> None:
        if value is _CLEAR:
            self._store.delete(self._key)
            self._log.debug("Snapshot cleared key=%s", self._key)
            return
        self._store.set(self._key, value)
        self._log.debug("Snapshot saved key=%s bytes=%d", self._key, len(value))


def encode_pending(trips: List[Trip]) -> str:
    return json_dumps_sorted(
        {
            "version": SNAPSHOT_FORMAT_VERSION,
            "trips": [trip.to_dict() for trip in trips],
        }
    )


def decode_pending(blob: str) -> List[Trip]:
    """Parse the pending hand-off list, raising :class:`SnapshotError` when unusable."""

    try:
        payload = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"Pending hand-offs are not valid JSON: {exc}") from exc
    if not isinstance(payload, dict) or payload.get("version") != SNAPSHOT_FORMAT_VERSION:
        raise SnapshotError("Unsupported pending hand-off document")
    items = payload.get("trips")
    if not isinstance(items, list):
        raise SnapshotError("Pending hand-off document has no trip list")
    try:
        return [Trip.from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise SnapshotError(f"Pending trip is malformed: {exc}") from exc


class PendingHandOffs:
    """Sealed trips whose history save failed, kept until a retry succeeds.

    Stored under their own key so starting a new trip can never overwrite
    them. Writes are synchronous; the list only changes when a trip finishes
    or a retry lands.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        key: str = PENDING_HANDOFF_KEY,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._key = key
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> List[Trip]:
        with self._lock:
            return self._read()

    def add(self, trip: Trip) -> None:
        with self._lock:
            trips = [item for item in self._read() if item.id != trip.id]
            trips.append(trip)
            self._write(trips)
        self._log.info("Queued trip id=%s for history retry (%d pending)", trip.id, len(trips))

    def remove(self, trip_id: str) -> bool:
        with self._lock:
            trips = self._read()
            remaining = [item for item in trips if item.id != trip_id]
            if len(remaining) == len(trips):
                return False
            self._write(remaining)
        self._log.info("Trip id=%s left the history retry queue", trip_id)
        return True

    def _read(self) -> List[Trip]:
        try:
            blob = self._store.get(self._key)
        except Exception as exc:
            self._log.warning("Pending hand-off read failed key=%s: %s", self._key, exc)
            return []
        if blob is None:
            return []
        try:
            return decode_pending(blob)
        except SnapshotError as exc:
            self._log.warning("Ignoring unreadable pending hand-offs key=%s: %s", self._key, exc)
            return []

    def _write(self, trips: List[Trip]) -> None:
        try:
            if trips:
                self._store.set(self._key, encode_pending(trips))
            else:
                self._store.delete(self._key)
        except Exception as exc:
            self._log.error(
                "Pending hand-off write failed key=%s: %s", self._key, exc, exc_info=True
            )


__all__ = [
    "LoadedSnapshot",
    "encode_snapshot",
    "decode_snapshot",
    "CoalescingWriter",
    "SnapshotBridge",
    "PendingHandOffs",
    "encode_pending",
    "decode_pending",
]
