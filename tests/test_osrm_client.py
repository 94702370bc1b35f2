import httpx
import pytest

from fieldroute.errors import OracleUnavailableError
from fieldroute.models.domain import GeoPoint, TravelMode
from fieldroute.services.routing import osrm_client
from fieldroute.services.routing.oracles import (
    ORToolsRouteOracle,
    OSRMMatrixProvider,
    OSRMRouteOracle,
    OSRMTravelTimeOracle,
)
from fieldroute.services.routing.osrm_client import OSRMClient, check_health, profile_for

BASE = GeoPoint(52.3676, 4.9041)
STOPS = [GeoPoint(52.38, 4.91), GeoPoint(52.39, 4.92), GeoPoint(52.37, 4.95)]


def _client(handler, **kwargs) -> OSRMClient:
    kwargs.setdefault("max_retries", 2)
    return OSRMClient(
        base_url="http://osrm.test",
        backoff_seconds=0.0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_table_formats_coordinates_as_lon_lat():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["annotations"] = request.url.params["annotations"]
        return httpx.Response(
            200,
            json={"code": "Ok", "durations": [[0, 60], [60, 0]], "distances": [[0, 900], [900, 0]]},
        )

    data = _client(handler).table([(52.3676, 4.9041), (52.38, 4.91)])

    assert seen["path"] == "/table/v1/driving/4.9041,52.3676;4.91,52.38"
    assert seen["annotations"] == "duration,distance"
    assert data["distances"][0][1] == 900


def test_server_errors_are_retried_then_reported_unavailable():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503, json={"message": "busy"})

    with pytest.raises(OracleUnavailableError):
        _client(handler).table([(52.0, 5.0), (52.1, 5.1)])
    assert len(attempts) == 3


def test_rate_limit_recovers_on_retry():
    responses = iter(
        [
            httpx.Response(429),
            httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 1234.4, "duration": 150.0}]}),
        ]
    )

    oracle = OSRMTravelTimeOracle(_client(lambda request: next(responses)))
    distance, minutes = oracle.travel(BASE, STOPS[0], TravelMode.DRIVING)

    assert distance == 1234
    assert minutes == pytest.approx(2.5)


def test_client_errors_are_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(400, json={"code": "InvalidQuery"})

    with pytest.raises(OracleUnavailableError):
        _client(handler).route([(52.0, 5.0), (52.1, 5.1)])
    assert len(attempts) == 1


def test_connection_errors_become_oracle_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OracleUnavailableError):
        _client(handler, max_retries=1).route([(52.0, 5.0), (52.1, 5.1)])


def test_osrm_error_code_is_a_value_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route"})

    with pytest.raises(ValueError, match="Impossible route"):
        _client(handler).route([(52.0, 5.0), (52.1, 5.1)])


def test_profile_mapping():
    assert profile_for(TravelMode.BICYCLING) == "bike"
    assert profile_for(TravelMode.WALKING) == "foot"
    with pytest.raises(OracleUnavailableError):
        profile_for(TravelMode.TRANSIT)


def test_travel_oracle_uses_mode_profile():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 800, "duration": 240}]})

    OSRMTravelTimeOracle(_client(handler)).travel(BASE, STOPS[0], TravelMode.BICYCLING)
    assert seen["path"].startswith("/route/v1/bike/")


def test_trip_oracle_reads_visiting_order_and_legs():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "code": "Ok",
                # Input coordinate i is visited at trip position waypoint_index.
                "waypoints": [
                    {"waypoint_index": 0, "trips_index": 0},
                    {"waypoint_index": 2, "trips_index": 0},
                    {"waypoint_index": 3, "trips_index": 0},
                    {"waypoint_index": 1, "trips_index": 0},
                ],
                "trips": [
                    {
                        "legs": [
                            {"distance": 2500.0, "duration": 300.0},
                            {"distance": 1800.0, "duration": 250.0},
                            {"distance": 1200.0, "duration": 120.0},
                            {"distance": 2100.0, "duration": 290.0},
                        ]
                    }
                ],
            },
        )

    solution = OSRMRouteOracle(_client(handler)).route(BASE, STOPS, BASE, TravelMode.DRIVING)

    assert seen["params"]["roundtrip"] == "true"
    assert seen["params"]["source"] == "first"
    assert solution.order == [2, 0, 1]
    assert solution.leg_distances_m == [2500, 1800, 1200, 2100]
    assert solution.leg_durations_min == [5, 5, 2, 5]


def test_trip_oracle_rejects_mismatched_waypoints():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"code": "Ok", "waypoints": [{"waypoint_index": 0}], "trips": [{"legs": []}]},
        )

    with pytest.raises(ValueError):
        OSRMRouteOracle(_client(handler)).route(BASE, STOPS, BASE, TravelMode.DRIVING)


def test_ortools_oracle_over_osrm_table():
    size = len(STOPS) + 1

    def handler(request: httpx.Request) -> httpx.Response:
        # Cheapest tour is base -> 1 -> 2 -> 3 -> base; every other pair costs more.
        durations = [[0 if i == j else 1000 for j in range(size)] for i in range(size)]
        for i in range(size):
            durations[i][(i + 1) % size] = 60
        distances = [[value * 10 for value in row] for row in durations]
        return httpx.Response(200, json={"code": "Ok", "durations": durations, "distances": distances})

    oracle = ORToolsRouteOracle(OSRMMatrixProvider(_client(handler)), time_limit_seconds=1)
    solution = oracle.route(BASE, STOPS, BASE, TravelMode.DRIVING)

    assert solution.order == [0, 1, 2]
    assert solution.leg_durations_min == [1, 1, 1, 1]
    assert solution.leg_distances_m == [600, 600, 600, 600]


def test_missing_base_url(monkeypatch):
    monkeypatch.setattr(osrm_client.settings, "osrm_base_url", None)
    with pytest.raises(ValueError):
        OSRMClient()


def test_check_health():
    healthy = httpx.MockTransport(
        lambda request: httpx.Response(
            200, json={"code": "Ok", "durations": [[0, 1], [1, 0]], "distances": [[0, 1], [1, 0]]}
        )
    )
    down = httpx.MockTransport(lambda request: httpx.Response(502))

    assert check_health("http://osrm.test", transport=healthy) is True
    assert check_health("http://osrm.test", transport=down) is False
