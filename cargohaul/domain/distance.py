"""
Offline distance estimation.

Great-circle (Haversine) distance scaled by a road-indirection factor is the
last tier of the routing fallback chain: it needs no network and always
produces an estimate.  The pseudo-geocoder below plays the same role for
address resolution.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from typing import Optional

from .entities import Location, RouteEstimate

EARTH_RADIUS_KM = 6_371.0

OFFLINE_SOURCE = "offline"
DEFAULT_SOURCE = "default"

# Floors keep every estimate strictly positive (identical endpoints).
MIN_DISTANCE_KM = 0.1
MIN_DURATION_MIN = 1


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def is_valid_location(location: Optional[Location]) -> bool:
    """Zero is a valid coordinate; missing, non-finite or out-of-range is not."""
    if location is None or location.latitude is None or location.longitude is None:
        return False
    try:
        lat, lng = float(location.latitude), float(location.longitude)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def offline_estimate(
    origin: Optional[Location],
    destination: Optional[Location],
    road_factor: float = 1.35,
    minutes_per_km: float = 1.8,
    default_distance_km: float = 50.0,
    default_duration_min: int = 60,
) -> RouteEstimate:
    """
    Approximate road distance as ``haversine * road_factor``.

    Duration is linear in distance (``ceil(distance * minutes_per_km)``).
    Invalid input yields the fixed default instead of failing.
    """
    if not (is_valid_location(origin) and is_valid_location(destination)):
        return RouteEstimate(
            distance_km=default_distance_km,
            duration_min=default_duration_min,
            source=DEFAULT_SOURCE,
        )

    straight = haversine_km(
        origin.latitude, origin.longitude,
        destination.latitude, destination.longitude,
    )
    road = max(round(straight * road_factor, 1), MIN_DISTANCE_KM)
    duration = max(math.ceil(road * minutes_per_km), MIN_DURATION_MIN)
    return RouteEstimate(distance_km=road, duration_min=duration, source=OFFLINE_SOURCE)


def fallback_coordinates(
    address: str, center_lat: float, center_lng: float
) -> Location:
    """
    Deterministic pseudo-coordinates for *address* near a centre point.

    The character-code sum is folded into a +/-0.1 degree box, so the same
    address always lands on the same point.
    """
    h = sum(ord(ch) for ch in address)
    offset = (h % 200) / 1000 - 0.1
    return Location(latitude=center_lat + offset, longitude=center_lng + offset)
