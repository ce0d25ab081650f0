"""Operator command line for the trip recording engine.

Usage:
    python -m cycle_tracker replay ride.jsonl --name "Morning loop"
    python -m cycle_tracker history
    python -m cycle_tracker snapshot [--clear]

Replay files hold one JSON object per line. Location records carry
``latitude``, ``longitude``, ``timestamp`` and optionally ``accuracy_m`` and
``speed_mps``; records of the form ``{"event": "pause"|"resume",
"timestamp": ...}`` drive the lifecycle. Record timestamps drive the engine
clock, so a replay reproduces the recorded durations.
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

from .clock import system_clock
from .config import GEOCODING_ENABLED, HISTORY_DIR, LOG_LEVEL, SNAPSHOT_DIR
from .geocoding import NominatimPlaceResolver
from .models import LocationSample
from .persistence.snapshot import SnapshotBridge
from .persistence.stores import FileSnapshotStore, JsonTripHistoryStore
from .tracking import EngineConfig, TripEngine
from .utils import format_duration, parse_iso_datetime

LOGGER = logging.getLogger(__name__)


def _setup_logging() -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL, logging.INFO),
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


class ReplayClock:
    """Clock that reports the timestamp of the record being replayed."""

    def __init__(self) -> None:
        self.now: datetime = system_clock()

    def __call__(self) -> datetime:
        return self.now


def iter_replay_records(path: Path) -> Iterator[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            text = line.strip()
            if not text or text.startswith("#"):
                continue
            try:
                record = json.loads(text)
            except ValueError as exc:
                LOGGER.warning("Skipping unreadable line %d: %s", line_no, exc)
                continue
            if not isinstance(record, dict):
                LOGGER.warning("Skipping line %d: expected an object", line_no)
                continue
            timestamp = parse_iso_datetime(record.get("timestamp"))
            if timestamp is None:
                LOGGER.warning("Skipping line %d: missing or invalid timestamp", line_no)
                continue
            record["timestamp"] = timestamp
            yield record


def _sample_from_record(record: Dict[str, Any]) -> LocationSample:
    accuracy = record.get("accuracy_m")
    speed = record.get("speed_mps")
    return LocationSample(
        latitude=float(record["latitude"]),
        longitude=float(record["longitude"]),
        timestamp=record["timestamp"],
        accuracy_m=float(accuracy) if accuracy is not None else None,
        speed_mps=float(speed) if speed is not None else None,
    )


def replay(
    path: Path,
    *,
    history: JsonTripHistoryStore,
    name: str | None = None,
    geocode: bool = False,
) -> int:
    records = list(iter_replay_records(path))
    if not records:
        LOGGER.error("Replay file %s holds no usable records", path)
        return 1
    clock = ReplayClock()
    clock.now = records[0]["timestamp"]
    engine = TripEngine(
        EngineConfig(
            clock=clock,
            history=history,
            place_resolver=NominatimPlaceResolver() if geocode else None,
            snapshot_every=0,
        )
    )
    engine.start()
    for record in records:
        clock.now = record["timestamp"]
        event = record.get("event")
        if event == "pause":
            engine.pause()
        elif event == "resume":
            engine.resume()
        elif event is None:
            try:
                engine.on_sample(_sample_from_record(record))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed sample %s: %s", record, exc)
        else:
            LOGGER.warning("Ignoring unknown event %r", event)

    result = engine.finish(name)
    trip = result.trip
    if not result.ok or trip is None:
        LOGGER.error("Replay did not produce a trip: %s", result.error)
        return 1
    LOGGER.info(
        "Replayed %s: %.2f km in %s (avg %.1f km/h, max %.1f km/h, %d kcal, %d points)",
        trip.name,
        trip.distance_km,
        format_duration(trip.active_duration_seconds()),
        trip.avg_speed_kmh,
        trip.max_speed_kmh,
        trip.calories_kcal,
        len(trip.coordinates),
    )
    return 0


def show_history(history: JsonTripHistoryStore) -> List[str]:
    lines = []
    for trip in history.list_trips():
        lines.append(
            f"{trip.start_time:%Y-%m-%d %H:%M}  {trip.name:<30} "
            f"{trip.distance_km:8.2f} km  {format_duration(trip.active_duration_seconds()):>8}  "
            f"{trip.id}"
        )
    return lines


def show_snapshot(bridge: SnapshotBridge, *, clear: bool = False) -> List[str]:
    loaded = bridge.load()
    if loaded is None:
        return ["No in-flight trip snapshot."]
    trip = loaded.trip
    now = system_clock()
    lines = [
        f"Trip {trip.id} ({'paused' if loaded.is_paused else 'active'})",
        f"  started:  {trip.start_time.isoformat()}",
        f"  saved:    {loaded.saved_at.isoformat()}",
        f"  distance: {trip.distance_km:.2f} km over {len(trip.coordinates)} points",
        f"  elapsed:  {format_duration(trip.duration_seconds(now))}",
    ]
    if clear:
        bridge.clear()
        bridge.flush()
        lines.append("Snapshot cleared.")
    return lines


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cycle Tracker trip engine tools")
    parser.add_argument(
        "--history-dir", default=HISTORY_DIR, help="Trip history directory"
    )
    parser.add_argument(
        "--snapshot-dir", default=SNAPSHOT_DIR, help="In-flight snapshot directory"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay_parser = sub.add_parser("replay", help="Replay a JSON-lines ride file")
    replay_parser.add_argument("path", type=Path)
    replay_parser.add_argument("--name", help="Trip name (defaults to 'Ride <date>')")
    replay_parser.add_argument(
        "--geocode",
        action="store_true",
        default=GEOCODING_ENABLED,
        help="Resolve start/end place names via Nominatim",
    )

    sub.add_parser("history", help="List saved trips, newest first")

    snapshot_parser = sub.add_parser("snapshot", help="Show the in-flight snapshot")
    snapshot_parser.add_argument(
        "--clear", action="store_true", help="Drop the snapshot after showing it"
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    _setup_logging()
    args = parse_args(argv)
    history = JsonTripHistoryStore(args.history_dir)
    if args.command == "replay":
        if not args.path.exists():
            LOGGER.error("Replay file %s does not exist", args.path)
            return 2
        return replay(args.path, history=history, name=args.name, geocode=args.geocode)
    if args.command == "history":
        lines = show_history(history)
        print("\n".join(lines) if lines else "No trips recorded.")
        return 0
    bridge = SnapshotBridge(FileSnapshotStore(args.snapshot_dir))
    print("\n".join(show_snapshot(bridge, clear=args.clear)))
    return 0
