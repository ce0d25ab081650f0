"""Global pytest fixtures & helpers.

Adds project root to path and provides a controllable clock, in-memory
stores and an engine factory so lifecycle tests stay isolated from each
other and from the wall clock.
"""
from __future__ import annotations

import math
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from cycle_tracker.location import LocationChannel
from cycle_tracker.models import LocationSample, Point
from cycle_tracker.persistence.stores import (
    InMemorySnapshotStore,
    InMemoryTripHistoryStore,
)
from cycle_tracker.tracking import EngineConfig, TripEngine

START = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
ORIGIN = Point(51.5007, -0.1246)


class FakeClock:
    """Manually advanced clock standing in for the wall clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


# --- Factory helpers -------------------------------------------------
def north_of(point: Point, metres: float) -> Point:
    """Point ``metres`` due north of ``point`` on the haversine sphere."""
    return Point(point.latitude + math.degrees(metres / 6_371_000.0), point.longitude)


def make_sample(
    point: Point,
    when: datetime,
    *,
    accuracy_m: float | None = 5.0,
    speed_mps: float | None = None,
) -> LocationSample:
    return LocationSample(
        latitude=point.latitude,
        longitude=point.longitude,
        timestamp=when,
        accuracy_m=accuracy_m,
        speed_mps=speed_mps,
    )


def ride(engine: TripEngine, clock: FakeClock, start: Point, steps: int, metres: float, seconds: float = 0.0) -> Point:
    """Feed ``steps`` samples each ``metres`` north of the previous one."""
    point = start
    for _ in range(steps):
        clock.advance(seconds)
        point = north_of(point, metres)
        engine.on_sample(make_sample(point, clock.now))
    return point


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def history():
    return InMemoryTripHistoryStore()


@pytest.fixture
def channel():
    return LocationChannel()


@pytest.fixture
def make_engine(clock, snapshot_store, history):
    def _make(**overrides) -> TripEngine:
        options = {
            "clock": clock,
            "snapshot_store": snapshot_store,
            "history": history,
        }
        options.update(overrides)
        return TripEngine(EngineConfig(**options))

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
