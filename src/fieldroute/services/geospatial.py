"""Geospatial helper functions."""

from __future__ import annotations

import math
from datetime import time
from typing import Sequence

from shapely.geometry import MultiPoint

from ..models.domain import GeoPoint, TravelMode

EARTH_RADIUS_KM = 6371.0

# Average speeds (km/h) for mixed urban/rural terrain.
ASSUMED_SPEEDS_KMH: dict[TravelMode, float] = {
    TravelMode.DRIVING: 40.0,
    TravelMode.BICYCLING: 18.0,
    TravelMode.WALKING: 5.0,
    TravelMode.TRANSIT: 30.0,
    TravelMode.TWO_WHEELER: 25.0,
}
# Parking and walking to the door.
FIXED_TRAVEL_BUFFER_MINUTES = 5
RUSH_HOUR_MULTIPLIER = 1.3
# Inclusive hour ranges.
PEAK_HOURS: tuple[tuple[int, int], ...] = ((7, 9), (16, 18))


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def distance_m(a: GeoPoint, b: GeoPoint) -> int:
    return int(round(distance_km(a, b) * 1000))


def is_peak_hour(departure: time | None, peak_hours: Sequence[tuple[int, int]] = PEAK_HOURS) -> bool:
    if departure is None:
        return False
    return any(start <= departure.hour <= end for start, end in peak_hours)


def estimate_travel_minutes(
    distance: float,
    mode: TravelMode = TravelMode.DRIVING,
    departure: time | None = None,
    *,
    peak_hours: Sequence[tuple[int, int]] = PEAK_HOURS,
) -> int:
    """Closed-form travel estimate used whenever no routing oracle answers.

    ``ceil(distance / speed * 60)``, scaled by the rush-hour multiplier for driving
    inside a peak window, plus the fixed buffer.
    """

    speed = ASSUMED_SPEEDS_KMH.get(mode, ASSUMED_SPEEDS_KMH[TravelMode.DRIVING])
    minutes = math.ceil(max(distance, 0.0) / speed * 60)
    if mode == TravelMode.DRIVING and is_peak_hour(departure, peak_hours):
        minutes = math.ceil(minutes * RUSH_HOUR_MULTIPLIER)
    return minutes + FIXED_TRAVEL_BUFFER_MINUTES


def convex_hull_area_km2(points: Sequence[GeoPoint]) -> float:
    """Approximate area covered by the points, in km².

    Points are projected onto a local equirectangular plane around their centroid,
    which is accurate enough for a single service region.
    """

    if len(points) < 3:
        return 0.0
    lat_ref = sum(point.latitude for point in points) / len(points)
    lon_ref = sum(point.longitude for point in points) / len(points)
    cos_ref = math.cos(math.radians(lat_ref))
    projected = [
        (
            EARTH_RADIUS_KM * math.radians(point.longitude - lon_ref) * cos_ref,
            EARTH_RADIUS_KM * math.radians(point.latitude - lat_ref),
        )
        for point in points
    ]
    return float(MultiPoint(projected).convex_hull.area)
