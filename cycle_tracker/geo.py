"""Great-circle distance helpers."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .config import DISTANCE_ROUND_DECIMALS, EARTH_RADIUS_KM
from .models import Point


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres, rounded to ~1 cm.

    Rounding bounds floating-point drift when thousands of small deltas are
    summed over a long ride.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return round(EARTH_RADIUS_KM * c, DISTANCE_ROUND_DECIMALS)


def point_distance_km(a: Point, b: Point) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_km(points: Sequence[Point]) -> float:
    """Raw geometric length of a path (no jitter threshold), vectorised."""

    if len(points) < 2:
        return 0.0
    coords = np.radians(
        np.array([(p.latitude, p.longitude) for p in points], dtype=np.float64)
    )
    lat = coords[:, 0]
    lon = coords[:, 1]
    d_phi = np.diff(lat)
    d_lambda = np.diff(lon)
    a = (
        np.sin(d_phi / 2.0) ** 2
        + np.cos(lat[:-1]) * np.cos(lat[1:]) * np.sin(d_lambda / 2.0) ** 2
    )
    c = 2.0 * np.arctan2(np.sqrt(a), np.sqrt(1.0 - a))
    return round(float(np.sum(EARTH_RADIUS_KM * c)), DISTANCE_ROUND_DECIMALS)


__all__ = ["haversine_km", "point_distance_km", "path_length_km"]
