"""Great-circle distance and map link helpers."""
from __future__ import annotations

from math import asin, cos, radians, sin, sqrt

from ..config import settings

EARTH_RADIUS_METERS = 6371000


def calculate_haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance in meters between two points on Earth.
    """
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return c * EARTH_RADIUS_METERS


def format_coordinates(latitude: float, longitude: float, places: int = 6) -> str:
    return f"{latitude:.{places}f}, {longitude:.{places}f}"


def map_link(latitude: float, longitude: float, base_url: str | None = None) -> str:
    """Deep link that opens the maps app centered on the coordinate."""
    base = base_url or settings.MAP_BASE_URL
    return f"{base}?ll={latitude},{longitude}"
