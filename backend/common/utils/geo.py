"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

import math
from dataclasses import dataclass
from math import radians, cos, sin, asin, sqrt
from typing import Any, Mapping, Optional

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Coordinates:
    """A validated latitude/longitude pair with optional heading in degrees."""
    latitude: float
    longitude: float
    heading: Optional[float] = None

    def as_dict(self):
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "heading": self.heading,
        }


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in kilometers (Haversine formula).
    
    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point
    
    Returns:
        Distance in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return c * EARTH_RADIUS_KM


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters."""
    return distance_km(lat1, lon1, lat2, lon2) * 1000


def _to_float(value: Any) -> Optional[float]:
    # bool is an int subclass; True/False are never coordinates
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_coordinates(raw: Any) -> Optional[Coordinates]:
    """
    Parse a client-supplied coordinate mapping.

    Accepts {"latitude": .., "longitude": .., "heading": ..} where values may
    be numbers or numeric strings. Returns None when latitude/longitude are
    missing, non-numeric, NaN/inf or out of range. An unusable heading is
    dropped rather than failing the whole fix.
    """
    if not isinstance(raw, Mapping):
        return None

    latitude = _to_float(raw.get("latitude"))
    longitude = _to_float(raw.get("longitude"))
    if latitude is None or longitude is None:
        return None
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        return None

    return Coordinates(
        latitude=latitude,
        longitude=longitude,
        heading=_to_float(raw.get("heading")),
    )
