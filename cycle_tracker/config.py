"""Central configuration for the Cycle Tracker trip recording engine.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Overrides are read from environment variables
(optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("CYCLE_TRACKER_LOG_LEVEL", "INFO").upper()


# ---------------------------------------------------------------------------
# Sample filtering
# ---------------------------------------------------------------------------
# Fixes reporting a horizontal error above this bound (metres) are dropped.
MAX_ACCURACY_METERS = _env_float("MAX_ACCURACY_METERS", 50.0)


# ---------------------------------------------------------------------------
# Distance accumulation
# ---------------------------------------------------------------------------
# Mean Earth radius used by the haversine formula.
EARTH_RADIUS_KM = 6371.0

# Deltas are rounded to this many decimals (5 -> ~1 cm) before use.
DISTANCE_ROUND_DECIMALS = 5

# Deltas below this value (km) are GPS jitter and do not count as distance.
MIN_DISTANCE_DELTA_KM = _env_float("MIN_DISTANCE_DELTA_KM", 0.005)

# Speeds below this value (km/h) are displayed as 0 and never become max speed.
MIN_SPEED_KMH = _env_float("MIN_SPEED_KMH", 1.0)


# ---------------------------------------------------------------------------
# Trip lifecycle
# ---------------------------------------------------------------------------
# Trips shorter than this (km) cannot be finished, only continued or discarded.
MIN_TRIP_DISTANCE_KM = _env_float("MIN_TRIP_DISTANCE_KM", 0.01)

# Fixes stamped up to this many seconds before a resume are still accepted,
# absorbing a GPS clock that runs slightly behind the system clock.
RESUME_FIX_TOLERANCE_SECONDS = _env_float("RESUME_FIX_TOLERANCE_SECONDS", 1.0)

# Flat calorie estimate per kilometre ridden.
CALORIES_PER_KM = _env_float("CALORIES_PER_KM", 45.0)

# Name template used when a trip is finished without a name.
DEFAULT_TRIP_NAME_FORMAT = "Ride {date}"


# ---------------------------------------------------------------------------
# Location provider hints
# ---------------------------------------------------------------------------
# The provider may ignore these; the engine tolerates any delivery cadence.
LOCATION_MIN_DISTANCE_M = _env_float("LOCATION_MIN_DISTANCE_M", 5.0)
LOCATION_INTERVAL_SECONDS = _env_float("LOCATION_INTERVAL_SECONDS", 1.0)


# ---------------------------------------------------------------------------
# Snapshot persistence
# ---------------------------------------------------------------------------
# Write a snapshot after this many accepted samples.
SNAPSHOT_EVERY_N_SAMPLES = _env_int("SNAPSHOT_EVERY_N_SAMPLES", 5)

# Snapshots older than this (hours since trip start) are abandoned on restore.
SNAPSHOT_MAX_AGE_HOURS = _env_float("SNAPSHOT_MAX_AGE_HOURS", 24.0)

# Key under which the in-flight trip blob is stored.
SNAPSHOT_KEY = os.getenv("SNAPSHOT_KEY", "active_trip")

# Key holding sealed trips whose history save failed and awaits a retry.
PENDING_HANDOFF_KEY = os.getenv("PENDING_HANDOFF_KEY", "pending_trips")

# Directory (absolute or relative) for the file-backed snapshot store.
SNAPSHOT_DIR = os.getenv("CYCLE_TRACKER_SNAPSHOT_DIR", "cycle_tracker_state")

# Bump when the snapshot document layout changes.
SNAPSHOT_FORMAT_VERSION = 1


# ---------------------------------------------------------------------------
# Trip history
# ---------------------------------------------------------------------------
# Directory (absolute or relative) holding one JSON document per saved trip.
HISTORY_DIR = os.getenv("CYCLE_TRACKER_HISTORY_DIR", "cycle_tracker_history")

# Polyline precision (decimal places) used when encoding trip paths.
HISTORY_POLYLINE_PRECISION = _env_int("HISTORY_POLYLINE_PRECISION", 6)


# ---------------------------------------------------------------------------
# Reverse geocoding
# ---------------------------------------------------------------------------
# Resolve start/end place names when finishing a trip.
GEOCODING_ENABLED = _env_bool("GEOCODING_ENABLED", False)

GEOCODING_URL = os.getenv(
    "GEOCODING_URL", "https://nominatim.openstreetmap.org/reverse"
)

# Nominatim requires an identifying user agent.
GEOCODING_USER_AGENT = os.getenv("GEOCODING_USER_AGENT", "CycleTracker/1.0")

# Request timeout in seconds.
GEOCODING_TIMEOUT = _env_float("GEOCODING_TIMEOUT", 10.0)

# Cached lookups are reused for this long (seconds).
GEOCODING_CACHE_TTL_SECONDS = _env_int("GEOCODING_CACHE_TTL_SECONDS", 24 * 3600)
GEOCODING_CACHE_SIZE = _env_int("GEOCODING_CACHE_SIZE", 256)
