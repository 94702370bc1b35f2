import math
from datetime import time

import pytest

from fieldroute.models.domain import GeoPoint, TravelMode
from fieldroute.services import geospatial
from fieldroute.services.geospatial import (
    convex_hull_area_km2,
    distance_km,
    distance_m,
    estimate_travel_minutes,
    haversine_km,
    is_peak_hour,
)

KM_PER_DEGREE = geospatial.EARTH_RADIUS_KM * math.pi / 180


def _north(point: GeoPoint, km: float) -> GeoPoint:
    return GeoPoint(point.latitude + km / KM_PER_DEGREE, point.longitude)


AMSTERDAM = GeoPoint(52.3676, 4.9041)
ROTTERDAM = GeoPoint(51.9244, 4.4777)


@pytest.mark.parametrize(
    "a, b",
    [
        (AMSTERDAM, ROTTERDAM),
        (GeoPoint(0.0, 0.0), GeoPoint(-33.86, 151.21)),
        (GeoPoint(89.9, 179.9), GeoPoint(-89.9, -179.9)),
    ],
)
def test_distance_is_symmetric(a: GeoPoint, b: GeoPoint):
    assert distance_km(a, b) == distance_km(b, a)
    assert distance_m(a, b) == distance_m(b, a)


def test_haversine_known_distance():
    assert haversine_km(AMSTERDAM.latitude, AMSTERDAM.longitude, AMSTERDAM.latitude, AMSTERDAM.longitude) == 0.0
    assert distance_km(AMSTERDAM, ROTTERDAM) == pytest.approx(57.5, abs=1.0)


def test_meridian_offset_matches_requested_distance():
    assert distance_km(AMSTERDAM, _north(AMSTERDAM, 9.9)) == pytest.approx(9.9, rel=1e-6)


def test_estimate_uses_mode_speed_and_fixed_buffer():
    # 9.9 km at 40 km/h is 14.85 minutes, rounded up, plus 5 minutes parking.
    assert estimate_travel_minutes(9.9, TravelMode.DRIVING) == 20
    assert estimate_travel_minutes(9.0, TravelMode.BICYCLING) == 30 + 5
    assert estimate_travel_minutes(1.0, TravelMode.WALKING) == 12 + 5
    assert estimate_travel_minutes(0.0) == geospatial.FIXED_TRAVEL_BUFFER_MINUTES


def test_rush_hour_only_slows_driving():
    assert estimate_travel_minutes(9.9, TravelMode.DRIVING, time(8, 15)) == math.ceil(15 * 1.3) + 5
    assert estimate_travel_minutes(9.9, TravelMode.DRIVING, time(12, 0)) == 20
    assert estimate_travel_minutes(9.0, TravelMode.BICYCLING, time(8, 15)) == 35


def test_peak_windows_are_inclusive_hours():
    assert is_peak_hour(time(7, 0))
    assert is_peak_hour(time(9, 59))
    assert not is_peak_hour(time(10, 0))
    assert is_peak_hour(time(18, 30))
    assert not is_peak_hour(None)
    assert not is_peak_hour(time(8, 0), peak_hours=())


def test_convex_hull_area_of_square():
    corner = GeoPoint(52.0, 5.0)
    north = _north(corner, 1.0)
    east_step = 1.0 / (KM_PER_DEGREE * math.cos(math.radians(52.0)))
    points = [
        corner,
        north,
        GeoPoint(corner.latitude, corner.longitude + east_step),
        GeoPoint(north.latitude, north.longitude + east_step),
    ]
    assert convex_hull_area_km2(points) == pytest.approx(1.0, rel=0.02)
    assert convex_hull_area_km2(points[:2]) == 0.0
