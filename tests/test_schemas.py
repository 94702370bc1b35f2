from datetime import date, time

import pytest

from fieldroute.errors import InvalidInputError
from fieldroute.models.domain import BusinessRules, DateRange, ServiceLocation, TravelMode
from fieldroute.schemas.scheduling import (
    AnalysisResponse,
    BacklogAssignmentRequest,
    BacklogAssignmentResponse,
    BusinessRulesModel,
    SlotSearchRequest,
    SlotSearchResponse,
    parse_request,
)
from fieldroute.services.analysis import analyze
from fieldroute.services.assignment import Strategy, assign_backlog
from fieldroute.services.availability import find_slots

BASE = {"latitude": 52.3676, "longitude": 4.9041, "location_id": "base"}
RULES = BusinessRules()


def _appointment(aid: str, latitude: float, **extra) -> dict:
    return {"appointment_id": aid, "location": {"latitude": latitude, "longitude": 4.9041}, **extra}


def test_invalid_payloads_raise_invalid_input():
    with pytest.raises(InvalidInputError):
        parse_request(SlotSearchRequest, {"target_date": "2024-06-03", "location": {"latitude": 95, "longitude": 4.9}})
    with pytest.raises(InvalidInputError):
        parse_request(
            BacklogAssignmentRequest,
            {"appointments": [], "start_date": "2024-06-07", "end_date": "2024-06-03", "base": BASE},
        )
    with pytest.raises(InvalidInputError):
        parse_request(
            BacklogAssignmentRequest,
            {"appointments": [], "start_date": "2024-06-03", "end_date": "2024-06-07", "base": BASE, "strategy": "x"},
        )


def test_slot_request_feeds_find_slots():
    request = parse_request(
        SlotSearchRequest,
        {
            "target_date": "2024-06-03",
            "location": {"latitude": 52.38, "longitude": 4.91},
            "existing": [_appointment("B1", 52.37, start_time="11:00")],
            "max_results": 2,
        },
    )

    kwargs = request.to_domain(RULES)

    assert kwargs["day"] == date(2024, 6, 3)
    assert kwargs["duration"] == RULES.default_duration_minutes
    assert kwargs["existing"][0].start_time == time(11, 0)
    assert kwargs["existing"][0].duration_minutes == 60
    assert kwargs["mode"] == TravelMode.DRIVING

    result = find_slots(**kwargs)
    response = SlotSearchResponse.from_result(result)

    assert response.date == "2024-06-03"
    assert len(response.slots) == 2
    assert response.slots[0].start == "09:30"


def test_rule_overrides_apply_on_top_of_defaults():
    overrides = BusinessRulesModel(max_appointments_per_day=3, working_weekdays=[5, 6], day_end="17:00")

    rules = overrides.to_domain(RULES)

    assert rules.max_appointments_per_day == 3
    assert rules.working_weekdays == (5, 6)
    assert rules.day_end == time(17, 0)
    assert rules.day_start == RULES.day_start


def test_backlog_request_round_trips_through_assignment():
    request = parse_request(
        BacklogAssignmentRequest,
        {
            "appointments": [
                _appointment("A1", 52.38, duration_minutes=30, priority=2),
                _appointment("A2", 52.39, duration_minutes=45, requested_date="2024-06-04"),
            ],
            "start_date": "2024-06-03",
            "end_date": "2024-06-07",
            "base": BASE,
            "strategy": "minimal_travel",
            "rules": {"buffer_minutes": 10},
        },
    )

    kwargs = request.to_domain(RULES)

    assert kwargs["date_range"] == DateRange(date(2024, 6, 3), date(2024, 6, 7))
    assert kwargs["strategy"] == Strategy.MINIMAL_TRAVEL
    assert kwargs["rules"].buffer_minutes == 10
    assert isinstance(kwargs["base"], ServiceLocation)

    response = BacklogAssignmentResponse.from_result(assign_backlog(**kwargs))

    assert response.summary.total_appointments == 2
    assert response.summary.assigned_appointments == 2
    assert response.residual == []
    assert {stop.appointment_id for cluster in response.clusters for stop in cluster.appointments} == {"A1", "A2"}
    assert all(cluster.method for cluster in response.clusters)


def test_analysis_response_from_report():
    request = parse_request(
        BacklogAssignmentRequest,
        {
            "appointments": [_appointment("A1", 52.38)],
            "start_date": "2024-06-03",
            "end_date": "2024-06-03",
            "base": BASE,
        },
    )
    result = assign_backlog(**request.to_domain(RULES))

    response = AnalysisResponse.from_report(analyze(result.clusters))

    assert response.metrics["total_days"] == 1
    assert response.metrics["total_appointments"] == 1
    assert response.days[0]["date"] == "2024-06-03"
    low_utilization = [item for item in response.recommendations if item.category == "low_utilization"]
    assert low_utilization[0].priority == "medium"
    assert low_utilization[0].days == ["2024-06-03"]
