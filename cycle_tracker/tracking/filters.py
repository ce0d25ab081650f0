"""Rejection of unusable GPS fixes."""

from __future__ import annotations

import logging
import math

from ..config import MAX_ACCURACY_METERS
from ..models import LocationSample

_LOGGER = logging.getLogger(__name__)


class SampleFilter:
    """Pure predicate deciding whether a raw fix may enter the trip.

    Speed is deliberately not filtered here; implausible speeds are clamped
    for display by the distance accumulator instead.
    """

    def __init__(self, max_accuracy_m: float = MAX_ACCURACY_METERS) -> None:
        self.max_accuracy_m = max_accuracy_m

    def accept(self, sample: LocationSample) -> bool:
        lat, lon = sample.latitude, sample.longitude
        if not (math.isfinite(lat) and math.isfinite(lon)):
            _LOGGER.debug("Dropping fix with non-finite coordinates (%s, %s)", lat, lon)
            return False
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            _LOGGER.debug("Dropping fix outside coordinate range (%s, %s)", lat, lon)
            return False
        accuracy = sample.accuracy_m
        if accuracy is not None and accuracy > self.max_accuracy_m:
            _LOGGER.debug(
                "Dropping low-accuracy fix accuracy=%.1fm limit=%.1fm",
                accuracy,
                self.max_accuracy_m,
            )
            return False
        return True
