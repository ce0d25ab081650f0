"""Duration bookkeeping derived from wall-clock timestamps.

Durations are never accumulated from periodic ticks. Every value is
recomputed from absolute instants, so missed ticks (suspension, a killed
process, a starved event loop) never distort the result.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Default clock: the current aware UTC wall-clock time."""

    return datetime.now(timezone.utc)


def seconds_between(earlier: datetime, later: datetime) -> float:
    """Return ``later - earlier`` in (fractional) seconds, floored at 0."""

    return max(0.0, (later - earlier).total_seconds())


def elapsed_seconds(start_time: datetime, now: datetime) -> int:
    """Whole seconds between trip start and ``now``.

    A clock that moved backwards yields 0 rather than a negative duration.
    """

    return int(seconds_between(start_time, now))


def active_seconds(
    start_time: datetime,
    now: datetime,
    paused_seconds: float,
    pause_started_at: Optional[datetime] = None,
) -> int:
    """Elapsed time excluding paused intervals, floored at 0.

    While a pause is open the active duration stays frozen at the moment the
    pause began, so ``now`` is replaced by ``pause_started_at``.
    """

    reference = now
    if pause_started_at is not None and pause_started_at < now:
        reference = pause_started_at
    return max(0, int(seconds_between(start_time, reference) - paused_seconds))


__all__ = [
    "Clock",
    "system_clock",
    "seconds_between",
    "elapsed_seconds",
    "active_seconds",
]
