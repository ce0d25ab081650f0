"""Trip recording engine.

Owns the authoritative ``IDLE -> ACTIVE <-> PAUSED -> FINISHED`` lifecycle
and the current :class:`~cycle_tracker.models.Trip` value. Every entry point
runs to completion on the caller's thread, so a single event loop driving
samples, lifecycle signals and user commands needs no further locking. The
trip is replaced (never mutated) on every transition; readers always hold an
immutable snapshot.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..clock import Clock, active_seconds, seconds_between, system_clock
from ..config import (
    LOCATION_INTERVAL_SECONDS,
    LOCATION_MIN_DISTANCE_M,
    MIN_TRIP_DISTANCE_KM,
    RESUME_FIX_TOLERANCE_SECONDS,
    SNAPSHOT_EVERY_N_SAMPLES,
    SNAPSHOT_MAX_AGE_HOURS,
)
from ..errors import InvalidTransitionError, TripTooShortError
from ..geocoding import PlaceResolver
from ..location import Broadcaster, LifecycleSignal, LocationProvider, Subscription
from ..models import (
    FinishResult,
    FinishStatus,
    LocationSample,
    TrackingView,
    Trip,
    TripState,
)
from ..persistence.snapshot import PendingHandOffs, SnapshotBridge
from ..persistence.stores import (
    InMemorySnapshotStore,
    InMemoryTripHistoryStore,
    SnapshotStore,
    TripHistoryStore,
)
from ..utils import to_utc_aware
from .distance import DistanceAccumulator, display_speed_kmh
from .filters import SampleFilter
from .finalizer import TripFinalizer, average_speed_kmh

ViewCallback = Callable[[TrackingView], None]


def _new_trip_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class EngineConfig:
    clock: Clock = system_clock
    snapshot_store: SnapshotStore | None = None
    history: TripHistoryStore | None = None
    location_provider: LocationProvider | None = None
    place_resolver: PlaceResolver | None = None
    snapshot_executor: Executor | None = None
    sample_filter: SampleFilter | None = None
    snapshot_every: int = SNAPSHOT_EVERY_N_SAMPLES
    max_snapshot_age: timedelta = timedelta(hours=SNAPSHOT_MAX_AGE_HOURS)
    min_trip_distance_km: float = MIN_TRIP_DISTANCE_KM
    resume_fix_tolerance: timedelta = timedelta(seconds=RESUME_FIX_TOLERANCE_SECONDS)
    location_min_distance_m: float = LOCATION_MIN_DISTANCE_M
    location_interval_s: float = LOCATION_INTERVAL_SECONDS
    id_factory: Callable[[], str] = _new_trip_id
    logger: logging.Logger | None = None


class TripEngine:
    def __init__(self, config: EngineConfig | None = None):
        # Injected collaborators may be falsy (an empty store has len 0), so
        # defaults apply only when nothing was passed.
        self.config = config if config is not None else EngineConfig()
        cfg = self.config
        self._log = cfg.logger if cfg.logger is not None else logging.getLogger(
            self.__class__.__name__
        )
        self._clock = cfg.clock
        self._history = (
            cfg.history if cfg.history is not None else InMemoryTripHistoryStore()
        )
        store = (
            cfg.snapshot_store
            if cfg.snapshot_store is not None
            else InMemorySnapshotStore()
        )
        self._snapshots = SnapshotBridge(
            store,
            clock=self._clock,
            executor=cfg.snapshot_executor,
        )
        self._pending = PendingHandOffs(store)
        self._finalizer = TripFinalizer(
            self._history, place_resolver=cfg.place_resolver
        )
        self._filter = (
            cfg.sample_filter if cfg.sample_filter is not None else SampleFilter()
        )
        self._accumulator = DistanceAccumulator()
        self._views: Broadcaster[TrackingView] = Broadcaster("views")
        self._state = TripState.IDLE
        self._trip: Optional[Trip] = None
        self._accepted_count = 0
        self._current_speed_kmh = 0.0
        self._accept_after: Optional[datetime] = None
        self._location_sub: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------
    @property
    def state(self) -> TripState:
        return self._state

    @property
    def trip(self) -> Optional[Trip]:
        return self._trip

    @property
    def history(self) -> TripHistoryStore:
        return self._history

    @property
    def snapshots(self) -> SnapshotBridge:
        return self._snapshots

    def view(self) -> TrackingView:
        trip = self._trip
        if trip is None:
            return TrackingView(state=self._state)
        now = self._clock()
        return TrackingView(
            state=self._state,
            trip_id=trip.id,
            latest_position=trip.coordinates[-1] if trip.coordinates else None,
            path=trip.coordinates,
            distance_km=trip.distance_km,
            duration_seconds=trip.duration_seconds(now),
            active_duration_seconds=trip.active_duration_seconds(now),
            current_speed_kmh=self._current_speed_kmh,
            max_speed_kmh=trip.max_speed_kmh,
        )

    def subscribe_view(self, callback: ViewCallback) -> Subscription:
        """Register a presentation sink; it receives a view after each change."""

        return self._views.add(callback)

    def _publish(self) -> None:
        if len(self._views):
            self._views.emit(self.view())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> Trip:
        if self._state is not TripState.IDLE:
            raise InvalidTransitionError(
                f"Cannot start a trip while {self._state.value}"
            )
        now = self._clock()
        trip = Trip(id=self.config.id_factory(), start_time=now)
        self._trip = trip
        self._state = TripState.ACTIVE
        self._accumulator.reseed(None)
        self._accepted_count = 0
        self._current_speed_kmh = 0.0
        self._accept_after = None
        self._log.info("Trip started id=%s at %s", trip.id, now.isoformat())
        self._save_snapshot()
        self._subscribe_location()
        self._publish()
        return trip

    def on_sample(self, sample: LocationSample) -> bool:
        """Apply a raw fix; returns True when the sample was accepted.

        Fix timestamps are compared with the engine clock after a resume:
        fixes stamped more than ``resume_fix_tolerance`` before the resume
        instant were captured while paused and are dropped. A device clock
        lagging the engine clock by more than the tolerance loses the fixes
        taken right after a resume.
        """

        trip = self._trip
        if self._state is not TripState.ACTIVE or trip is None:
            return False
        if self._accept_after is not None:
            cutoff = self._accept_after - self.config.resume_fix_tolerance
            if to_utc_aware(sample.timestamp) < cutoff:
                self._log.debug(
                    "Dropping fix captured before resume at %s", sample.timestamp
                )
                return False
        if not self._filter.accept(sample):
            return False

        point = sample.point
        step = self._accumulator.add(point)
        speed = display_speed_kmh(sample.speed_mps)
        distance = round(trip.distance_km + step.counted_km, 5)
        now = self._clock()
        active = active_seconds(trip.start_time, now, trip.paused_seconds)
        self._trip = replace(
            trip,
            coordinates=trip.coordinates + (point,),
            distance_km=distance,
            max_speed_kmh=max(trip.max_speed_kmh, speed),
            avg_speed_kmh=average_speed_kmh(distance, active),
        )
        self._current_speed_kmh = speed
        self._accepted_count += 1
        if step.raw_delta_km and not step.counted_km:
            self._log.debug("Jitter delta %.5fkm not counted", step.raw_delta_km)
        if self.config.snapshot_every > 0 and (
            self._accepted_count % self.config.snapshot_every == 0
        ):
            self._save_snapshot()
        self._publish()
        return True

    def pause(self) -> bool:
        trip = self._trip
        if self._state is not TripState.ACTIVE or trip is None:
            return False
        now = self._clock()
        self._trip = replace(trip, pause_started_at=now)
        self._state = TripState.PAUSED
        self._current_speed_kmh = 0.0
        self._log.info("Trip paused id=%s", trip.id)
        self._save_snapshot()
        self._publish()
        return True

    def resume(self) -> bool:
        trip = self._trip
        if self._state is not TripState.PAUSED or trip is None:
            return False
        now = self._clock()
        self._trip = self._close_pause(trip, now)
        self._state = TripState.ACTIVE
        self._accept_after = now
        self._log.info(
            "Trip resumed id=%s paused_total=%.0fs", trip.id, self._trip.paused_seconds
        )
        self._save_snapshot()
        self._publish()
        return True

    @staticmethod
    def _close_pause(trip: Trip, now: datetime) -> Trip:
        if trip.pause_started_at is None:
            return trip
        return replace(
            trip,
            paused_seconds=trip.paused_seconds
            + seconds_between(trip.pause_started_at, now),
            pause_started_at=None,
        )

    def finish(self, name: Optional[str] = None) -> FinishResult:
        trip = self._trip
        if self._state not in (TripState.ACTIVE, TripState.PAUSED) or trip is None:
            raise InvalidTransitionError(
                f"Cannot finish a trip while {self._state.value}"
            )
        now = self._clock()
        closed = self._close_pause(trip, now)
        minimum = self.config.min_trip_distance_km
        if closed.distance_km < minimum:
            self._log.info(
                "Trip id=%s too short to finish (%.3fkm < %.3fkm)",
                trip.id,
                closed.distance_km,
                minimum,
            )
            # The in-memory trip is left untouched, including any open pause.
            return FinishResult(
                status=FinishStatus.TOO_SHORT,
                trip=trip,
                error=TripTooShortError(closed.distance_km, minimum),
            )

        self._state = TripState.FINISHED
        sealed = self._finalizer.seal(closed, now, name)
        self._release()
        result = self._finalizer.hand_off(sealed)
        if not result.ok:
            self._pending.add(sealed)
        self._snapshots.clear()
        self._publish()
        return result

    def retry_history_save(self, trip: Trip) -> FinishResult:
        """Repeat the history hand-off of a sealed trip (upsert by id)."""

        if not trip.is_sealed:
            raise InvalidTransitionError("Only sealed trips can be saved to history")
        result = self._finalizer.hand_off(trip)
        if result.ok:
            self._pending.remove(trip.id)
        return result

    def pending_hand_offs(self) -> List[Trip]:
        """Sealed trips whose history save has not succeeded yet."""

        return self._pending.load()

    def retry_pending_hand_offs(self) -> List[FinishResult]:
        results = [self.retry_history_save(trip) for trip in self._pending.load()]
        failed = sum(1 for result in results if not result.ok)
        if failed:
            self._log.warning(
                "%d of %d pending history hand-offs still failing", failed, len(results)
            )
        return results

    def discard(self) -> bool:
        trip = self._trip
        if self._state not in (TripState.ACTIVE, TripState.PAUSED) or trip is None:
            return False
        self._log.info(
            "Trip discarded id=%s distance=%.3fkm", trip.id, trip.distance_km
        )
        self._release()
        self._snapshots.clear()
        self._publish()
        return True

    def _release(self) -> None:
        self._unsubscribe_location()
        self._trip = None
        self._state = TripState.IDLE
        self._accumulator.reseed(None)
        self._accepted_count = 0
        self._current_speed_kmh = 0.0
        self._accept_after = None

    # ------------------------------------------------------------------
    # Recovery and external signals
    # ------------------------------------------------------------------
    def restore(self) -> bool:
        """Rehydrate an in-flight trip from the snapshot store.

        Returns True when a trip was restored. A trip already in memory always
        wins over the stored snapshot. Pending history hand-offs are retried
        first; those that fail again stay queued for the next restore.
        """

        if self._trip is not None:
            return False
        self.retry_pending_hand_offs()
        loaded = self._snapshots.load()
        if loaded is None:
            return False
        trip = loaded.trip
        if trip.is_sealed:
            # Sealed trips belong in the retry queue, never in the live slot.
            self._pending.add(trip)
            self._snapshots.clear()
            self.retry_history_save(trip)
            return False
        now = self._clock()
        age = now - trip.start_time
        if age > self.config.max_snapshot_age:
            self._log.warning(
                "Abandoning snapshot for trip id=%s started %s ago", trip.id, age
            )
            self._snapshots.clear()
            return False

        if loaded.is_paused:
            state = TripState.PAUSED
        else:
            state = TripState.ACTIVE
            trip = self._close_pause(trip, now) if trip.pause_started_at else trip
        self._trip = trip
        self._state = state
        self._accumulator.reseed(trip.coordinates[-1] if trip.coordinates else None)
        self._accepted_count = 0
        self._current_speed_kmh = 0.0
        self._accept_after = None
        self._log.info(
            "Restored trip id=%s state=%s points=%d distance=%.3fkm elapsed=%ss",
            trip.id,
            state.value,
            len(trip.coordinates),
            trip.distance_km,
            trip.duration_seconds(now),
        )
        self._subscribe_location()
        self._publish()
        return True

    def on_lifecycle(self, signal: LifecycleSignal) -> None:
        if signal is LifecycleSignal.BACKGROUND:
            if self._trip is not None:
                self._save_snapshot()
                self._snapshots.flush()
            return
        if self._trip is None:
            self.restore()
        else:
            self._publish()

    def close(self) -> None:
        """Stop receiving locations and wait for outstanding snapshot writes."""

        self._unsubscribe_location()
        self._snapshots.flush()

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    def _save_snapshot(self) -> None:
        trip = self._trip
        if trip is None:
            return
        self._snapshots.save(trip, self._state is TripState.PAUSED)

    def _subscribe_location(self) -> None:
        provider = self.config.location_provider
        if provider is None or self._location_sub is not None:
            return
        self._location_sub = provider.subscribe(
            self.on_sample,
            min_distance_m=self.config.location_min_distance_m,
            interval_s=self.config.location_interval_s,
        )

    def _unsubscribe_location(self) -> None:
        sub, self._location_sub = self._location_sub, None
        if sub is not None:
            sub.unsubscribe()


__all__ = ["EngineConfig", "TripEngine"]
