from datetime import date, time

import pytest

from fieldroute.config import Settings
from fieldroute.errors import InvalidInputError
from fieldroute.models.domain import (
    Appointment,
    BusinessRules,
    DateRange,
    GeoPoint,
    Schedule,
    ServiceLocation,
    base_from_settings,
    parse_clock,
    resolve_point,
    time_of,
    waypoint_cache_id,
)


def _appointment(aid: str, lat: float = 52.37, lon: float = 4.90, **kwargs) -> Appointment:
    return Appointment(
        appointment_id=aid,
        location=ServiceLocation(point=GeoPoint(lat, lon), address=f"Street {aid}"),
        duration_minutes=kwargs.pop("duration_minutes", 60),
        **kwargs,
    )


@pytest.mark.parametrize(
    "lat, lon",
    [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (float("nan"), 0.0), (0.0, float("inf")), ("52", 4.9)],
)
def test_geopoint_rejects_invalid_coordinates(lat, lon):
    with pytest.raises(InvalidInputError):
        GeoPoint(lat, lon)


def test_invalid_input_is_a_value_error():
    with pytest.raises(ValueError):
        GeoPoint(100.0, 0.0)


@pytest.mark.parametrize("duration", [0, -30])
def test_appointment_requires_positive_duration(duration):
    with pytest.raises(InvalidInputError):
        _appointment("A1", duration_minutes=duration)


def test_appointment_scheduling_returns_copies():
    original = _appointment("A1")
    scheduled = original.scheduled(date(2024, 6, 3), time(10, 0))

    assert original.scheduled_date is None
    assert scheduled.scheduled_date == date(2024, 6, 3)
    assert scheduled.end_time == time(11, 0)
    assert scheduled.unscheduled() == original


def test_resolve_point_accepts_all_waypoint_shapes():
    point = GeoPoint(52.0, 5.0)
    location = ServiceLocation(point=point, location_id="depot")
    appointment = Appointment("A1", location, 30)

    assert resolve_point(point) == point
    assert resolve_point(location) == point
    assert resolve_point(appointment) == point
    assert waypoint_cache_id(location) == "depot"
    assert waypoint_cache_id(point) == "52.0000,5.0000"
    with pytest.raises(InvalidInputError):
        resolve_point((52.0, 5.0))


def test_business_rules_validation():
    with pytest.raises(InvalidInputError):
        BusinessRules(day_start=time(16, 0), day_end=time(9, 30))
    with pytest.raises(InvalidInputError):
        BusinessRules(max_appointments_per_day=0)
    with pytest.raises(InvalidInputError):
        BusinessRules(working_weekdays=(0, 7))

    rules = BusinessRules()
    assert rules.window_minutes == 390
    assert rules.is_working_day(date(2024, 6, 3))
    assert not rules.is_working_day(date(2024, 6, 8))


def test_business_rules_from_settings():
    config = Settings(
        day_start="08:00",
        day_end="17:00",
        working_days="mon, wed, sat",
        max_appointments_per_day=7,
        buffer_minutes=10,
    )
    rules = BusinessRules.from_settings(config)

    assert rules.day_start == time(8, 0)
    assert rules.working_weekdays == (0, 2, 5)
    assert rules.max_appointments_per_day == 7
    assert rules.buffer_minutes == 10


def test_business_rules_from_settings_rejects_unknown_day():
    with pytest.raises(InvalidInputError):
        BusinessRules.from_settings(Settings(working_days=("MON", "XYZ")))


def test_clock_helpers():
    assert parse_clock("09:30") == time(9, 30)
    assert time_of(24 * 60 + 15) == time(0, 15)
    with pytest.raises(InvalidInputError):
        parse_clock("half past nine")


def test_date_range_days_and_membership():
    window = DateRange(date(2024, 6, 3), date(2024, 6, 5))
    assert list(window.days()) == [date(2024, 6, 3), date(2024, 6, 4), date(2024, 6, 5)]
    assert date(2024, 6, 4) in window
    assert date(2024, 6, 6) not in window
    with pytest.raises(InvalidInputError):
        DateRange(date(2024, 6, 5), date(2024, 6, 3))


def test_schedule_enforces_single_membership():
    schedule = Schedule([date(2024, 6, 3), date(2024, 6, 4)])
    appointment = _appointment("A1")

    schedule.assign(appointment, date(2024, 6, 3))
    schedule.assign(appointment, date(2024, 6, 4))

    assert schedule.cluster(date(2024, 6, 3)).appointment_ids() == []
    assert schedule.cluster(date(2024, 6, 4)).appointment_ids() == ["A1"]
    assert schedule.cluster_of("A1").day == date(2024, 6, 4)
    assert schedule.cluster(date(2024, 6, 4)).appointments[0].scheduled_date == date(2024, 6, 4)
    assert [cluster.day for cluster in schedule.clusters()] == [date(2024, 6, 4)]
    assert len(schedule.clusters(include_empty=True)) == 2

    removed = schedule.remove("A1")
    assert removed.appointment_id == "A1"
    assert "A1" not in schedule
    assert schedule.remove("A1") is None


def test_schedule_assign_at_position():
    day = date(2024, 6, 3)
    schedule = Schedule([day])
    schedule.assign(_appointment("A1"), day)
    schedule.assign(_appointment("A2"), day)

    schedule.assign(_appointment("A3"), day, 1)
    schedule.assign(_appointment("A4"), day, 0)

    assert schedule.cluster(day).appointment_ids() == ["A4", "A1", "A3", "A2"]


def test_base_from_settings():
    base = base_from_settings(Settings(base_latitude=50.85, base_longitude=5.69))
    assert base.point == GeoPoint(50.85, 5.69)
    assert base.cache_id == "base"
