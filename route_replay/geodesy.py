"""
Pure distance and formatting helpers.

No state and no I/O: the recorder uses distance() for live accumulation and
the playback side uses total_distance() and the formatters for display.
"""
from __future__ import annotations

import math
from typing import Iterable

from .const import EARTH_RADIUS


def _coords(point) -> tuple[float, float]:
    """Return (lat, lng) for a tuple, a LatLng-like or a RoutePoint-like object."""
    if isinstance(point, (tuple, list)):
        return float(point[0]), float(point[1])
    if hasattr(point, "lat"):
        return float(point.lat), float(point.lng)
    return float(point.latitude), float(point.longitude)


def distance(a, b) -> float:
    """
    Great-circle distance in metres between two positions (haversine).

    Non-finite inputs yield NaN; callers are expected to reject them upstream.
    """
    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    if not all(math.isfinite(v) for v in (lat1, lng1, lat2, lng2)):
        return math.nan

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))
    return EARTH_RADIUS * c


def total_distance(points: Iterable) -> float:
    """Sum of distance() over consecutive pairs; 0 for fewer than two points."""
    total = 0.0
    previous = None
    for point in points:
        if previous is not None:
            total += distance(previous, point)
        previous = point
    return total


def format_distance(meters: float) -> str:
    """950 -> '950m', 1500 -> '1.50km'."""
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.2f}km"


def format_duration(seconds: float) -> str:
    """3661 -> '1h 1m 1s', 61 -> '1m 1s', 5 -> '5s'."""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
