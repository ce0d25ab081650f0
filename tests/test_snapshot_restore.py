"""Snapshot triggers and rehydration of in-flight trips."""

from __future__ import annotations

import json
import logging

import pytest

from cycle_tracker.location import LifecycleSignal
from cycle_tracker.models import Trip, TripState
from cycle_tracker.persistence.snapshot import SnapshotBridge, decode_snapshot, encode_snapshot

from conftest import ORIGIN, make_sample, north_of, ride


def _stored(snapshot_store):
    blob = snapshot_store.get("active_trip")
    return None if blob is None else decode_snapshot(blob)


class _CountingStore:
    def __init__(self) -> None:
        self.data = {}
        self.sets = 0

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.sets += 1
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


def test_snapshot_written_every_fifth_accepted_sample(make_engine, clock) -> None:
    store = _CountingStore()
    engine = make_engine(snapshot_store=store)
    engine.start()
    assert store.sets == 1

    ride(engine, clock, ORIGIN, steps=4, metres=50.0)
    assert store.sets == 1
    ride(engine, clock, north_of(ORIGIN, 200.0), steps=1, metres=50.0)
    assert store.sets == 2

    # Rejected samples do not count towards the trigger.
    for _ in range(5):
        engine.on_sample(make_sample(ORIGIN, clock.now, accuracy_m=99.0))
    assert store.sets == 2


def test_pause_resume_and_background_save(engine, clock, snapshot_store) -> None:
    engine.start()
    engine.on_sample(make_sample(ORIGIN, clock.now))

    engine.pause()
    assert _stored(snapshot_store).is_paused is True
    engine.resume()
    assert _stored(snapshot_store).is_paused is False

    engine.on_sample(make_sample(north_of(ORIGIN, 30.0), clock.advance(10)))
    engine.on_lifecycle(LifecycleSignal.BACKGROUND)
    assert len(_stored(snapshot_store).trip.coordinates) == 2


def test_restore_after_two_hour_gap(make_engine, clock) -> None:
    engine = make_engine()
    engine.start()
    engine.on_sample(make_sample(ORIGIN, clock.now))
    ride(engine, clock, ORIGIN, steps=20, metres=100.0)
    engine.on_lifecycle(LifecycleSignal.BACKGROUND)
    before = engine.trip
    assert before.distance_km == pytest.approx(2.0, abs=1e-3)
    del engine  # process killed

    clock.advance(hours=2)
    revived = make_engine()
    assert revived.restore() is True

    trip = revived.trip
    assert revived.state is TripState.ACTIVE
    assert trip.start_time == before.start_time
    assert trip.distance_km == before.distance_km
    assert trip.coordinates == before.coordinates
    assert trip.duration_seconds(clock.now) == pytest.approx(7200, abs=1)


def test_restore_reseeds_reference_point(make_engine, clock) -> None:
    engine = make_engine()
    engine.start()
    last = ride(engine, clock, ORIGIN, steps=5, metres=400.0)

    revived = make_engine()
    revived.restore()
    revived.on_sample(make_sample(north_of(last, 10.0), clock.advance(5)))

    assert revived.trip.distance_km == pytest.approx(1.61, abs=1e-4)


def test_restore_paused_trip_keeps_pause_running(make_engine, clock) -> None:
    engine = make_engine()
    engine.start()
    clock.advance(600)
    engine.pause()

    clock.advance(hours=1)
    revived = make_engine()
    assert revived.restore() is True
    assert revived.state is TripState.PAUSED
    assert revived.trip.active_duration_seconds(clock.now) == 600

    revived.resume()
    assert revived.trip.paused_seconds == pytest.approx(3600)


def test_snapshot_older_than_a_day_is_abandoned(make_engine, clock, snapshot_store, caplog) -> None:
    engine = make_engine()
    engine.start()
    ride(engine, clock, ORIGIN, steps=5, metres=400.0)

    clock.advance(hours=25)
    revived = make_engine()
    with caplog.at_level(logging.WARNING, logger="TripEngine"):
        assert revived.restore() is False

    assert revived.state is TripState.IDLE
    assert revived.trip is None
    assert "active_trip" not in snapshot_store
    assert "abandoning" in caplog.text.lower()


@pytest.mark.parametrize(
    "blob",
    [
        "not json",
        "[]",
        json.dumps({"version": 99, "trip": {}}),
        json.dumps({"version": 1, "saved_at": "2025-06-01T08:00:00+00:00", "trip": {"id": "x"}}),
        json.dumps(
            {
                "version": 1,
                "saved_at": "2025-06-01T08:00:00+00:00",
                "trip": {"id": "x", "start_time": "2025-06-01T08:00:00+00:00", "calories_kcal": float("inf")},
            }
        ),
        json.dumps(
            {
                "version": 1,
                "saved_at": "9999-12-31T23:59:59-01:00",
                "trip": {"id": "x", "start_time": "2025-06-01T08:00:00+00:00"},
            }
        ),
        json.dumps(
            {
                "version": 1,
                "saved_at": "2025-06-01T08:00:00+00:00",
                "trip": {"id": "x", "start_time": "9999-12-31T23:59:59-01:00"},
            }
        ),
    ],
)
def test_corrupt_snapshot_starts_idle(make_engine, snapshot_store, blob) -> None:
    snapshot_store.set("active_trip", blob)
    engine = make_engine()
    assert engine.restore() is False
    assert engine.state is TripState.IDLE


def test_trip_in_memory_wins_over_snapshot(engine, clock) -> None:
    trip = engine.start()
    clock.advance(60)
    assert engine.restore() is False
    assert engine.trip is trip


def test_foreground_signal_runs_resumption_check(make_engine, clock) -> None:
    make_engine().start()
    revived = make_engine()
    revived.on_lifecycle(LifecycleSignal.FOREGROUND)
    assert revived.state is TripState.ACTIVE


class _OfflineHistory:
    def save(self, trip):
        raise ConnectionError("offline")


def _finish_offline(make_engine, clock):
    engine = make_engine(history=_OfflineHistory())
    engine.start()
    ride(engine, clock, ORIGIN, steps=3, metres=100.0, seconds=10)
    result = engine.finish("Commute")
    assert not result.ok
    return engine, result.trip


def test_pending_history_hand_off_is_retried_on_restore(make_engine, clock, history, snapshot_store) -> None:
    engine, sealed = _finish_offline(make_engine, clock)
    assert [trip.id for trip in engine.pending_hand_offs()] == [sealed.id]
    assert "active_trip" not in snapshot_store

    revived = make_engine()
    assert revived.restore() is False
    assert revived.state is TripState.IDLE
    assert history.get(sealed.id).name == "Commute"
    assert revived.pending_hand_offs() == []
    assert "pending_trips" not in snapshot_store


def test_failed_retry_survives_starting_a_new_trip(make_engine, clock, history, snapshot_store) -> None:
    _, sealed = _finish_offline(make_engine, clock)

    still_offline = make_engine(history=_OfflineHistory())
    assert still_offline.restore() is False
    fresh = still_offline.start()
    assert fresh.id != sealed.id
    assert _stored(snapshot_store).trip.id == fresh.id
    assert [trip.id for trip in still_offline.pending_hand_offs()] == [sealed.id]

    still_offline.discard()
    online = make_engine()
    assert online.restore() is False
    assert history.get(sealed.id).name == "Commute"
    assert online.pending_hand_offs() == []


def test_sealed_trip_in_live_slot_is_handed_to_history(make_engine, clock, history, snapshot_store) -> None:
    sealed = Trip(id="old", start_time=clock.now, end_time=clock.now, distance_km=1.0, name="Old")
    snapshot_store.set("active_trip", encode_snapshot(sealed, False, clock.now))

    engine = make_engine()
    assert engine.restore() is False
    assert engine.state is TripState.IDLE
    assert history.get("old").name == "Old"
    assert "active_trip" not in snapshot_store


def test_write_failure_is_logged_and_retried(clock, caplog) -> None:
    class _FlakyStore(_CountingStore):
        def __init__(self) -> None:
            super().__init__()
            self.fail_next = True

        def set(self, key, value):
            if self.fail_next:
                self.fail_next = False
                raise OSError("read-only filesystem")
            super().set(key, value)

    store = _FlakyStore()
    bridge = SnapshotBridge(store, clock=clock)

    trip = Trip(id="abc", start_time=clock.now)
    with caplog.at_level(logging.WARNING):
        bridge.save(trip, False)
    assert "snapshot write failed" in caplog.text.lower()
    assert bridge.load() is None

    bridge.save(trip, True)
    loaded = bridge.load()
    assert loaded is not None
    assert loaded.is_paused is True
    assert loaded.trip.id == "abc"
