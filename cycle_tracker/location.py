"""Location delivery channel and lifecycle signals.

The engine never owns a global GPS callback. It subscribes to a provider and
keeps the returned :class:`Subscription`; calling ``unsubscribe`` is the only
cancellation mechanism and guarantees no further delivery.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, Generic, Optional, Protocol, TypeVar

from .models import LocationSample

T = TypeVar("T")
SampleCallback = Callable[[LocationSample], None]


class LifecycleSignal(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class Subscription:
    """Handle returned by subscribe calls; idempotent ``unsubscribe``."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()


class LocationProvider(Protocol):
    def subscribe(
        self,
        callback: SampleCallback,
        *,
        min_distance_m: float,
        interval_s: float,
    ) -> Subscription:  # pragma: no cover - protocol
        ...


class Broadcaster(Generic[T]):
    """Synchronous fan-out of values to registered callbacks."""

    def __init__(self, name: str = "broadcaster") -> None:
        self._log = logging.getLogger(f"{self.__class__.__name__}.{name}")
        self._listeners: Dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, callback: Callable[[T], None]) -> Subscription:
        token = self._next_id
        self._next_id += 1
        self._listeners[token] = callback
        return Subscription(lambda: self._listeners.pop(token, None))

    def emit(self, value: T) -> int:
        """Deliver ``value`` to current listeners; returns the delivery count."""

        delivered = 0
        for token, callback in list(self._listeners.items()):
            # A listener removed by an earlier callback must not be invoked.
            if token not in self._listeners:
                continue
            try:
                callback(value)
            except Exception as exc:  # pragma: no cover - listener failure
                self._log.error("Listener raised while handling value: %s", exc, exc_info=True)
            delivered += 1
        return delivered


class LocationChannel:
    """In-process location provider fed by ``publish``.

    Hints passed at subscription time are recorded for the feeding side (a
    device bridge, a replay file) but the channel delivers whatever cadence it
    is given.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._broadcaster: Broadcaster[LocationSample] = Broadcaster("location")
        self.min_distance_m: float | None = None
        self.interval_s: float | None = None

    @property
    def subscriber_count(self) -> int:
        return len(self._broadcaster)

    def subscribe(
        self,
        callback: SampleCallback,
        *,
        min_distance_m: float,
        interval_s: float,
    ) -> Subscription:
        self.min_distance_m = min_distance_m
        self.interval_s = interval_s
        self._log.debug(
            "Location subscription min_distance=%.1fm interval=%.1fs",
            min_distance_m,
            interval_s,
        )
        return self._broadcaster.add(callback)

    def publish(self, sample: LocationSample) -> int:
        return self._broadcaster.emit(sample)


__all__ = [
    "LifecycleSignal",
    "Subscription",
    "LocationProvider",
    "Broadcaster",
    "LocationChannel",
    "SampleCallback",
]
