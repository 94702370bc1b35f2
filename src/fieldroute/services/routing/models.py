"""Routing domain models and oracle contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal, Protocol, Sequence

from ...models.domain import GeoPoint, TravelMode

LegSource = Literal["oracle", "cache", "estimate"]


@dataclass(slots=True)
class TravelLeg:
    distance_m: int
    duration_min: int
    source: LegSource


@dataclass(slots=True)
class RouteSolution:
    """Visiting order over the waypoints plus per-leg metrics.

    ``order`` holds waypoint indices. Legs run origin -> first stop -> ... -> last stop
    -> destination, so there is one more leg than there are waypoints.
    """

    order: List[int]
    leg_distances_m: List[int]
    leg_durations_min: List[int]


class TravelTimeOracle(Protocol):
    def travel(self, origin: GeoPoint, destination: GeoPoint, mode: TravelMode) -> tuple[int, float]:
        """Return (distance in meters, duration in minutes)."""
        ...


class RouteOracle(Protocol):
    def route(
        self,
        origin: GeoPoint,
        waypoints: Sequence[GeoPoint],
        destination: GeoPoint,
        mode: TravelMode,
    ) -> RouteSolution:
        ...
