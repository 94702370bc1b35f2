"""Routing oracles backed by OSRM and OR-Tools."""

from __future__ import annotations

import logging
import math
from typing import Callable, Sequence

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from ...config import settings
from ...models.domain import GeoPoint, TravelMode
from ..geospatial import distance_km, distance_m, estimate_travel_minutes
from .models import RouteSolution
from .osrm_client import OSRMClient, profile_for

logger = logging.getLogger(__name__)

# Unreachable pairs in an OSRM table (~277 hours / ~1M km).
LARGE_PENALTY = 999999999

# (durations in seconds, distances in meters)
Matrices = tuple[list[list[int]], list[list[int]]]
MatrixProvider = Callable[[Sequence[GeoPoint], TravelMode], Matrices]


def _coordinates(points: Sequence[GeoPoint]) -> list[tuple[float, float]]:
    return [point.as_tuple() for point in points]


def _minutes(seconds: float) -> int:
    return int(math.ceil(seconds / 60.0))


class OSRMTravelTimeOracle:
    """Point-to-point legs from the OSRM route service."""

    def __init__(self, client: OSRMClient) -> None:
        self.client = client

    def travel(self, origin: GeoPoint, destination: GeoPoint, mode: TravelMode) -> tuple[int, float]:
        data = self.client.route(_coordinates([origin, destination]), profile=profile_for(mode))
        route = data["routes"][0]
        try:
            distance = float(route["distance"])
            duration = float(route["duration"])
        except (KeyError, TypeError) as exc:
            raise ValueError(f"OSRM route response is missing distance/duration: {route!r}") from exc
        return int(round(distance)), duration / 60.0


class OSRMRouteOracle:
    """Visiting order from the OSRM trip service (roundtrip when origin equals destination)."""

    def __init__(self, client: OSRMClient) -> None:
        self.client = client

    def route(
        self,
        origin: GeoPoint,
        waypoints: Sequence[GeoPoint],
        destination: GeoPoint,
        mode: TravelMode,
    ) -> RouteSolution:
        if not waypoints:
            return RouteSolution(order=[], leg_distances_m=[], leg_durations_min=[])

        roundtrip = origin == destination
        points = [origin, *waypoints] if roundtrip else [origin, *waypoints, destination]
        data = self.client.trip(_coordinates(points), roundtrip=roundtrip, profile=profile_for(mode))

        returned = data["waypoints"]
        if len(returned) != len(points):
            raise ValueError(f"OSRM trip returned {len(returned)} waypoints for {len(points)} coordinates.")
        try:
            trip_positions = [int(entry["waypoint_index"]) for entry in returned]
            legs = data["trips"][0]["legs"]
            leg_distances = [int(round(float(leg["distance"]))) for leg in legs]
            leg_durations = [_minutes(float(leg["duration"])) for leg in legs]
        except (KeyError, IndexError, TypeError) as exc:
            raise ValueError("Malformed OSRM trip response.") from exc

        stop_indices = range(1, len(waypoints) + 1)
        order = [index - 1 for index in sorted(stop_indices, key=lambda index: trip_positions[index])]
        return RouteSolution(order=order, leg_distances_m=leg_distances, leg_durations_min=leg_durations)


def haversine_matrix(points: Sequence[GeoPoint], mode: TravelMode) -> Matrices:
    """Closed-form matrices used when no OSRM table is available."""

    size = len(points)
    durations = [[0] * size for _ in range(size)]
    distances = [[0] * size for _ in range(size)]
    for i, origin in enumerate(points):
        for j, destination in enumerate(points):
            if i == j:
                continue
            distances[i][j] = distance_m(origin, destination)
            durations[i][j] = estimate_travel_minutes(distance_km(origin, destination), mode) * 60
    return durations, distances


class OSRMMatrixProvider:
    def __init__(self, client: OSRMClient) -> None:
        self.client = client

    def __call__(self, points: Sequence[GeoPoint], mode: TravelMode) -> Matrices:
        return prepare_matrices(self.client.table(_coordinates(points), profile=profile_for(mode)))


def prepare_matrices(osrm_result: dict) -> Matrices:
    """Integer matrices from an OSRM table result.

    Unreachable pairs (``None``) get a large penalty instead of 0 so the solver
    never treats them as free.
    """
    durations = osrm_result.get("durations")
    distances = osrm_result.get("distances")
    if durations is None or distances is None:
        raise ValueError("OSRM table response missing durations or distances.")

    duration_matrix = [[int(value) if value is not None else LARGE_PENALTY for value in row] for row in durations]
    distance_matrix = [[int(value) if value is not None else LARGE_PENALTY for value in row] for row in distances]
    if len(duration_matrix) != len(distance_matrix):
        raise ValueError(f"Matrix size mismatch: durations={len(duration_matrix)}, distances={len(distance_matrix)}")
    return duration_matrix, distance_matrix


class ORToolsRouteOracle:
    """Single-vehicle TSP solved locally with OR-Tools.

    Arc cost is travel duration. Matrices come from ``matrix_provider`` (an OSRM
    table, for instance) or the haversine estimate when none is given.
    """

    def __init__(
        self,
        matrix_provider: MatrixProvider | None = None,
        *,
        time_limit_seconds: int | None = None,
    ) -> None:
        self.matrix_provider = matrix_provider or haversine_matrix
        self.time_limit_seconds = (
            time_limit_seconds if time_limit_seconds is not None else settings.solver_time_limit_seconds
        )

    def route(
        self,
        origin: GeoPoint,
        waypoints: Sequence[GeoPoint],
        destination: GeoPoint,
        mode: TravelMode,
    ) -> RouteSolution:
        if not waypoints:
            return RouteSolution(order=[], leg_distances_m=[], leg_durations_min=[])

        roundtrip = origin == destination
        points = [origin, *waypoints] if roundtrip else [origin, *waypoints, destination]
        duration_matrix, distance_matrix = self.matrix_provider(points, mode)
        size = len(points)
        if len(duration_matrix) != size or any(len(row) != size for row in duration_matrix):
            raise ValueError(f"Duration matrix does not match {size} locations.")
        if len(distance_matrix) != size or any(len(row) != size for row in distance_matrix):
            raise ValueError(f"Distance matrix does not match {size} locations.")

        end_node = 0 if roundtrip else size - 1
        manager = pywrapcp.RoutingIndexManager(size, 1, [0], [end_node])
        routing = pywrapcp.RoutingModel(manager)

        def duration_callback(from_index: int, to_index: int) -> int:
            from_node = manager.IndexToNode(from_index)
            to_node = manager.IndexToNode(to_index)
            return duration_matrix[from_node][to_node]

        transit_callback_index = routing.RegisterTransitCallback(duration_callback)
        routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

        search_parameters = pywrapcp.DefaultRoutingSearchParameters()
        search_parameters.first_solution_strategy = routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
        search_parameters.local_search_metaheuristic = (
            routing_enums_pb2.LocalSearchMetaheuristic.GUIDED_LOCAL_SEARCH
        )
        search_parameters.time_limit.FromSeconds(self.time_limit_seconds)

        assignment = routing.SolveWithParameters(search_parameters)
        if not assignment:
            raise ValueError(f"OR-Tools found no visiting order for {len(waypoints)} stops.")

        nodes: list[int] = []
        index = routing.Start(0)
        while not routing.IsEnd(index):
            nodes.append(manager.IndexToNode(index))
            index = assignment.Value(routing.NextVar(index))
        nodes.append(manager.IndexToNode(index))

        leg_distances: list[int] = []
        leg_durations: list[int] = []
        for from_node, to_node in zip(nodes, nodes[1:]):
            if duration_matrix[from_node][to_node] >= LARGE_PENALTY:
                raise ValueError(f"Locations {from_node} and {to_node} are not connected.")
            leg_distances.append(distance_matrix[from_node][to_node])
            leg_durations.append(_minutes(duration_matrix[from_node][to_node]))

        order = [node - 1 for node in nodes[1:-1]]
        logger.debug(f"OR-Tools ordered {len(order)} stops, {sum(leg_durations)} travel minutes")
        return RouteSolution(order=order, leg_distances_m=leg_distances, leg_durations_min=leg_durations)
