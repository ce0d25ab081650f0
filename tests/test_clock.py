"""Wall-clock duration derivation."""

from __future__ import annotations

from datetime import timedelta

from cycle_tracker.clock import active_seconds, elapsed_seconds

from conftest import START


def test_elapsed_is_whole_seconds_from_timestamps() -> None:
    assert elapsed_seconds(START, START + timedelta(seconds=90.9)) == 90


def test_clock_moving_backwards_floors_at_zero() -> None:
    assert elapsed_seconds(START, START - timedelta(minutes=5)) == 0
    assert active_seconds(START, START - timedelta(minutes=5), 0.0) == 0


def test_active_excludes_paused_and_never_goes_negative() -> None:
    now = START + timedelta(seconds=100)
    assert active_seconds(START, now, 30.0) == 70
    assert active_seconds(START, now, 500.0) == 0


def test_active_is_frozen_while_pause_is_open() -> None:
    paused_at = START + timedelta(seconds=60)
    later = START + timedelta(hours=2)
    assert active_seconds(START, later, 10.0, paused_at) == 50
