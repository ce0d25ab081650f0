"""Operator CLI: replay, history listing and snapshot inspection."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from cycle_tracker.main import main
from cycle_tracker.persistence.snapshot import encode_snapshot
from cycle_tracker.persistence.stores import FileSnapshotStore, JsonTripHistoryStore
from cycle_tracker.models import Trip

from conftest import ORIGIN, START, north_of


def _write_ride(path, *, metres_per_step: float = 100.0, steps: int = 10) -> None:
    lines = []
    point = ORIGIN
    when = START
    for index in range(steps + 1):
        lines.append(
            json.dumps(
                {
                    "latitude": point.latitude,
                    "longitude": point.longitude,
                    "timestamp": when.isoformat(),
                    "accuracy_m": 4.0,
                    "speed_mps": 6.0,
                }
            )
        )
        if index == 4:
            lines.append(json.dumps({"event": "pause", "timestamp": (when + timedelta(seconds=1)).isoformat()}))
            when += timedelta(seconds=60)
            lines.append(json.dumps({"event": "resume", "timestamp": when.isoformat()}))
        point = north_of(point, metres_per_step)
        when += timedelta(seconds=20)
    lines.append("not json")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def test_replay_saves_trip_to_history(tmp_path) -> None:
    ride_file = tmp_path / "ride.jsonl"
    _write_ride(ride_file)
    history_dir = tmp_path / "history"

    code = main(["--history-dir", str(history_dir), "replay", str(ride_file), "--name", "Loop"])

    assert code == 0
    trips = JsonTripHistoryStore(history_dir).list_trips()
    assert len(trips) == 1
    trip = trips[0]
    assert trip.name == "Loop"
    assert trip.distance_km == round(trip.distance_km, 5)
    assert abs(trip.distance_km - 1.0) < 1e-3
    assert trip.paused_seconds == 59
    assert trip.max_speed_kmh == pytest.approx(21.6)


def test_replay_of_a_too_short_ride_fails(tmp_path) -> None:
    ride_file = tmp_path / "short.jsonl"
    _write_ride(ride_file, metres_per_step=0.5)
    assert main(["--history-dir", str(tmp_path / "h"), "replay", str(ride_file)]) == 1


def test_missing_replay_file(tmp_path) -> None:
    assert main(["--history-dir", str(tmp_path), "replay", str(tmp_path / "nope.jsonl")]) == 2


def test_history_listing(tmp_path, capsys) -> None:
    store = JsonTripHistoryStore(tmp_path)
    assert main(["--history-dir", str(tmp_path), "history"]) == 0
    assert "No trips recorded." in capsys.readouterr().out

    store.save(
        Trip(
            id="abc123",
            start_time=START,
            end_time=START + timedelta(minutes=75),
            distance_km=21.5,
            name="Hills",
        )
    )
    main(["--history-dir", str(tmp_path), "history"])
    out = capsys.readouterr().out
    assert "Hills" in out
    assert "21.50 km" in out
    assert "1h 15m" in out


def test_snapshot_show_and_clear(tmp_path, capsys) -> None:
    snapshot_dir = tmp_path / "state"
    trip = Trip(id="live", start_time=START, coordinates=(ORIGIN,), distance_km=3.2)
    FileSnapshotStore(snapshot_dir).set("active_trip", encode_snapshot(trip, True, START))

    assert main(["--snapshot-dir", str(snapshot_dir), "snapshot", "--clear"]) == 0
    out = capsys.readouterr().out
    assert "Trip live (paused)" in out
    assert "3.20 km over 1 points" in out
    assert "Snapshot cleared." in out
    assert FileSnapshotStore(snapshot_dir).get("active_trip") is None
