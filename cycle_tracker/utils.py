"""General utility helpers shared across modules."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def format_duration(seconds: int | float) -> str:
    """Format seconds into a ``Xh Ym`` (or ``Ym``) string."""

    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_speed(speed_kmh: float) -> str:
    return f"{speed_kmh:.1f} km/h" if speed_kmh > 0 else "0.0 km/h"


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into a UTC datetime."""

    if isinstance(value, datetime):
        return to_utc_aware(value)
    if not isinstance(value, str) or not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return to_utc_aware(datetime.fromisoformat(raw))
    except (ValueError, OverflowError):
        return None


def _normalise_value(value: Any) -> Any:
    """Render datetimes as ISO strings, recursing through containers."""

    if isinstance(value, datetime):
        return to_utc_aware(value).isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalise_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalise_value(val) for key, val in value.items()}
    return value


def json_dumps_sorted(value: Any) -> str:
    """Canonical compact JSON used for snapshot blobs."""

    return json.dumps(_normalise_value(value), sort_keys=True, separators=(",", ":"))
