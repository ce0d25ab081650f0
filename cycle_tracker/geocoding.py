"""Reverse geocoding of trip start/end points via OpenStreetMap Nominatim.

Lookups are optional enrichment: any failure falls back to a coordinate label
so finishing a trip never depends on the network.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Tuple

import requests
from cachetools import TTLCache
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import (
    GEOCODING_CACHE_SIZE,
    GEOCODING_CACHE_TTL_SECONDS,
    GEOCODING_TIMEOUT,
    GEOCODING_URL,
    GEOCODING_USER_AGENT,
)
from .errors import GeocodingError
from .models import Point

_CacheKey = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class PlaceName:
    name: str
    address: str = ""


class PlaceResolver(Protocol):
    def resolve(self, point: Point) -> PlaceName:  # pragma: no cover - protocol
        ...


def coordinate_label(point: Point) -> PlaceName:
    """Fallback place name built from the coordinates themselves."""

    return PlaceName(
        name=f"{point.latitude:.4f}, {point.longitude:.4f}",
        address=f"Latitude: {point.latitude:.4f}, Longitude: {point.longitude:.4f}",
    )


def place_from_address(point: Point, address: Mapping[str, Any]) -> PlaceName:
    """Pick the most specific readable name from a Nominatim address block."""

    locality = address.get("city") or address.get("town") or address.get("village")
    if address.get("road"):
        name = str(address["road"])
        if address.get("house_number"):
            name = f"{address['house_number']} {name}"
    elif address.get("neighbourhood") or address.get("suburb"):
        name = str(address.get("neighbourhood") or address.get("suburb"))
    elif locality:
        name = str(locality)
    elif address.get("state"):
        name = str(address["state"])
    else:
        return coordinate_label(point)
    parts = [
        address.get("road"),
        address.get("neighbourhood"),
        address.get("suburb"),
        locality,
        address.get("state"),
        address.get("country"),
    ]
    full = ", ".join(str(part) for part in parts if part)
    return PlaceName(name=name, address=full or name)


def _build_retry() -> Retry:
    return Retry(
        total=2,
        backoff_factor=1.0,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
    )


def create_geocoding_session(user_agent: str = GEOCODING_USER_AGENT) -> Session:
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=_build_retry())
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept": "application/json",
            "User-Agent": user_agent,
        }
    )
    return session


class NominatimPlaceResolver:
    """Cached reverse geocoder; never raises from :meth:`resolve`."""

    def __init__(
        self,
        *,
        session: Optional[Session] = None,
        url: str = GEOCODING_URL,
        timeout: float = GEOCODING_TIMEOUT,
        cache_size: int = GEOCODING_CACHE_SIZE,
        cache_ttl: int = GEOCODING_CACHE_TTL_SECONDS,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._session = session or create_geocoding_session()
        self._url = url
        self._timeout = timeout
        self._cache: TTLCache[_CacheKey, PlaceName] = TTLCache(
            maxsize=max(1, cache_size), ttl=max(1, cache_ttl)
        )
        self._cache_lock = threading.RLock()

    @staticmethod
    def _cache_key(point: Point) -> _CacheKey:
        # ~11 m buckets; nearby start/end points share one lookup.
        return (round(point.latitude, 4), round(point.longitude, 4))

    def lookup(self, point: Point) -> PlaceName:
        """Query Nominatim, raising :class:`GeocodingError` on any failure."""

        params = {
            "lat": point.latitude,
            "lon": point.longitude,
            "format": "json",
            "addressdetails": 1,
        }
        try:
            response = self._session.get(self._url, params=params, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise GeocodingError(f"Geocoding request failed: {exc}") from exc
        except ValueError as exc:
            raise GeocodingError("Geocoding response was not JSON") from exc
        if not isinstance(payload, dict):
            raise GeocodingError("Unexpected geocoding payload")
        if payload.get("error"):
            raise GeocodingError(str(payload["error"]))
        address = payload.get("address")
        if not isinstance(address, Mapping):
            raise GeocodingError("Geocoding payload has no address")
        return place_from_address(point, address)

    def resolve(self, point: Point) -> PlaceName:
        key = self._cache_key(point)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            place = self.lookup(point)
        except GeocodingError as exc:
            self._log.warning(
                "Reverse geocoding failed for %.4f,%.4f: %s",
                point.latitude,
                point.longitude,
                exc,
            )
            return coordinate_label(point)
        with self._cache_lock:
            self._cache[key] = place
        return place


__all__ = [
    "PlaceName",
    "PlaceResolver",
    "NominatimPlaceResolver",
    "coordinate_label",
    "place_from_address",
    "create_geocoding_session",
]
