"""Stop sequencing within a technician day.

Two interchangeable strategies propose a visiting order: one delegates to a
route oracle (OSRM trip, OR-Tools), the other is a nearest-neighbour walk over
haversine distances. The sequencer tries them in turn and always ends with the
nearest-neighbour walk, so a day is sequenced even when every oracle is down.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from ...errors import OperationCancelled
from ...models.domain import (
    Appointment,
    BusinessRules,
    DayCluster,
    GeoPoint,
    TimelineSlot,
    TravelMode,
    Waypoint,
    minutes_of,
    resolve_point,
    time_of,
)
from ..analysis.scoring import efficiency_score, is_dense
from ..cancellation import CancellationToken
from ..geospatial import distance_km
from .models import RouteOracle, TravelLeg
from .travel import LegRequest, TravelTimeService

logger = logging.getLogger(__name__)

ORACLE_METHOD = "oracle"
NEAREST_NEIGHBOR_METHOD = "nearest_neighbor"
INSERTION_METHOD = "insertion"


@dataclass(slots=True)
class SequenceOutcome:
    """Proposed visiting order; leg lists are present when the proposer measured them."""

    order: list[int]
    method: str
    leg_distances_m: Optional[list[int]] = None
    leg_durations_min: Optional[list[int]] = None

    def has_legs(self) -> bool:
        expected = len(self.order) + 1
        return (
            self.leg_distances_m is not None
            and self.leg_durations_min is not None
            and len(self.leg_distances_m) == expected
            and len(self.leg_durations_min) == expected
        )


class SequencingStrategy(ABC):
    """Contract for visiting-order proposers."""

    name: str

    @abstractmethod
    def propose(self, base: GeoPoint, stops: Sequence[GeoPoint], mode: TravelMode) -> SequenceOutcome | None:
        """Return an order over ``stops`` or ``None`` when no order could be produced."""
        raise NotImplementedError


class OracleSequencing(SequencingStrategy):
    name = ORACLE_METHOD

    def __init__(self, oracle: RouteOracle) -> None:
        self.oracle = oracle

    def propose(self, base: GeoPoint, stops: Sequence[GeoPoint], mode: TravelMode) -> SequenceOutcome | None:
        try:
            solution = self.oracle.route(base, list(stops), base, mode)
            outcome = SequenceOutcome(
                order=list(solution.order),
                method=self.name,
                leg_distances_m=list(solution.leg_distances_m),
                leg_durations_min=list(solution.leg_durations_min),
            )
        except Exception as exc:
            # Oracles are pluggable; whatever they raise, the day still gets sequenced.
            logger.warning(
                f"Route oracle unavailable ({type(exc).__name__}: {exc}); "
                "falling back to nearest-neighbour sequencing (degraded mode)."
            )
            return None

        if sorted(outcome.order) != list(range(len(stops))):
            logger.warning(f"Route oracle returned an invalid visiting order {outcome.order}; ignoring it.")
            return None
        if not outcome.has_legs():
            # Order is usable, legs get re-measured.
            outcome.leg_distances_m = None
            outcome.leg_durations_min = None
        return outcome


class NearestNeighborSequencing(SequencingStrategy):
    name = NEAREST_NEIGHBOR_METHOD

    def propose(self, base: GeoPoint, stops: Sequence[GeoPoint], mode: TravelMode) -> SequenceOutcome:
        remaining = list(range(len(stops)))
        order: list[int] = []
        current = base
        while remaining:
            # min() keeps the first of equal distances, so ties follow input order.
            nearest = min(remaining, key=lambda index: distance_km(current, stops[index]))
            order.append(nearest)
            remaining.remove(nearest)
            current = stops[nearest]
        return SequenceOutcome(order=order, method=self.name)


@dataclass(slots=True)
class SequencedDay:
    day: date
    appointments: list[Appointment] = field(default_factory=list)
    total_distance_m: int = 0
    total_travel_minutes: int = 0
    total_minutes: int = 0
    timeline: list[TimelineSlot] = field(default_factory=list)
    method: str = NEAREST_NEIGHBOR_METHOD
    # Fixed-start appointments the plan reaches after their booked time.
    late_appointment_ids: list[str] = field(default_factory=list)

    @property
    def efficiency(self) -> int:
        if not self.appointments:
            return efficiency_score(0)
        return efficiency_score(
            self.total_travel_minutes, dense=is_dense([appointment.point for appointment in self.appointments])
        )

    def fits(self, rules: BusinessRules) -> bool:
        return (
            len(self.appointments) <= rules.max_appointments_per_day
            and self.total_minutes <= rules.window_minutes
            and not self.late_appointment_ids
        )

    def to_cluster(self) -> DayCluster:
        return DayCluster(
            day=self.day,
            appointments=list(self.appointments),
            total_distance_m=self.total_distance_m,
            total_travel_minutes=self.total_travel_minutes,
            efficiency=self.efficiency,
            timeline=list(self.timeline),
        )


class RouteSequencer:
    """Orders a day's stops and lays out its timeline."""

    def __init__(
        self,
        rules: BusinessRules,
        *,
        travel: TravelTimeService | None = None,
        oracle: RouteOracle | None = None,
        strategies: Sequence[SequencingStrategy] | None = None,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> None:
        self.rules = rules
        self.travel = travel or TravelTimeService()
        self.mode = mode
        if strategies is not None:
            self.strategies = list(strategies)
        else:
            self.strategies = [OracleSequencing(oracle)] if oracle is not None else []
        if not any(isinstance(strategy, NearestNeighborSequencing) for strategy in self.strategies):
            self.strategies.append(NearestNeighborSequencing())

    def order(
        self,
        base: GeoPoint,
        stops: Sequence[GeoPoint],
        cancel: CancellationToken | None = None,
    ) -> SequenceOutcome:
        for strategy in self.strategies:
            # Once cancelled only the local walk runs; oracles are not consulted again.
            if cancel is not None and cancel.cancelled and not isinstance(strategy, NearestNeighborSequencing):
                continue
            outcome = strategy.propose(base, stops, self.mode)
            if outcome is not None:
                return outcome
        # Unreachable while NearestNeighborSequencing is in the list.
        raise RuntimeError("No sequencing strategy produced an order.")

    def sequence_day(
        self,
        cluster: DayCluster,
        base: Waypoint,
        cancel: CancellationToken | None = None,
    ) -> SequencedDay:
        appointments = list(cluster.appointments)
        if not appointments:
            return SequencedDay(day=cluster.day)
        outcome = self.order(resolve_point(base), [appointment.point for appointment in appointments], cancel)
        ordered = [appointments[index] for index in outcome.order]
        return self.plan(cluster.day, ordered, base, outcome, cancel)

    def plan(
        self,
        day: date,
        ordered: Sequence[Appointment],
        base: Waypoint,
        outcome: SequenceOutcome | None = None,
        cancel: CancellationToken | None = None,
    ) -> SequencedDay:
        """Like :meth:`build_plan`, but a cancelled run finishes on closed-form estimates instead of raising."""

        if cancel is not None and cancel.cancelled:
            return self.build_plan(day, ordered, base, outcome, estimate_only=True)
        try:
            return self.build_plan(day, ordered, base, outcome, cancel)
        except OperationCancelled:
            logger.info(f"Sequencing {day} cancelled; finishing the day with closed-form estimates")
            return self.build_plan(day, ordered, base, outcome, estimate_only=True)

    def _measure(
        self,
        stops: Sequence[Waypoint],
        cancel: CancellationToken | None,
        estimate_only: bool,
    ) -> list[TravelLeg]:
        requests: list[LegRequest] = [(origin, destination, None) for origin, destination in zip(stops, stops[1:])]
        if estimate_only:
            return [self.travel.estimate(origin, destination, self.mode) for origin, destination, _ in requests]
        # One bounded batch, so every oracle lookup is subject to the per-call timeout.
        return self.travel.batch_legs(requests, self.mode, cancel)

    def build_plan(
        self,
        day: date,
        ordered: Sequence[Appointment],
        base: Waypoint,
        outcome: SequenceOutcome | None = None,
        cancel: CancellationToken | None = None,
        *,
        estimate_only: bool = False,
    ) -> SequencedDay:
        """Lay out ``ordered`` from day start: travel, appointment, buffer, then back to base.

        Fixed start times are never moved. Arriving early waits; arriving late is
        recorded in ``late_appointment_ids`` and makes the plan unfit.
        """

        if not ordered:
            return SequencedDay(day=day, method=outcome.method if outcome is not None else INSERTION_METHOD)
        use_outcome_legs = outcome is not None and outcome.has_legs()
        stops: list[Waypoint] = [base, *ordered, base]
        legs = [] if use_outcome_legs else self._measure(stops, cancel, estimate_only)

        clock = self.rules.start_minute
        timeline: list[TimelineSlot] = []
        scheduled: list[Appointment] = []
        late: list[str] = []
        total_distance = 0
        total_travel = 0

        for leg_index, (origin, destination) in enumerate(zip(stops, stops[1:])):
            if use_outcome_legs:
                distance = outcome.leg_distances_m[leg_index]
                minutes = outcome.leg_durations_min[leg_index]
            else:
                leg = legs[leg_index]
                if leg.source == "estimate":
                    # Re-estimate with the real departure so rush hour applies.
                    leg = self.travel.estimate(origin, destination, self.mode, time_of(clock))
                distance, minutes = leg.distance_m, leg.duration_min
            timeline.append(
                TimelineSlot(
                    kind="travel",
                    start=time_of(clock),
                    end=time_of(clock + minutes),
                    travel_distance_m=distance,
                    travel_duration_min=minutes,
                )
            )
            clock += minutes
            total_distance += distance
            total_travel += minutes

            if leg_index == len(ordered):
                break
            appointment = ordered[leg_index]
            if appointment.start_time is not None:
                fixed_start = minutes_of(appointment.start_time)
                if fixed_start > clock:
                    timeline.append(TimelineSlot(kind="idle", start=time_of(clock), end=appointment.start_time))
                    clock = fixed_start
                elif fixed_start < clock:
                    logger.debug(f"Appointment {appointment.appointment_id} would arrive late at {time_of(clock)}")
                    late.append(appointment.appointment_id)
                # A booked time is kept as is; a late plan is rejected by ``fits``.
                scheduled.append(appointment.scheduled(day, appointment.start_time))
            else:
                scheduled.append(appointment.scheduled(day, time_of(clock)))
            timeline.append(
                TimelineSlot(
                    kind="appointment",
                    start=time_of(clock),
                    end=time_of(clock + appointment.duration_minutes),
                    appointment_id=appointment.appointment_id,
                )
            )
            clock += appointment.duration_minutes
            if self.rules.buffer_minutes:
                timeline.append(
                    TimelineSlot(kind="idle", start=time_of(clock), end=time_of(clock + self.rules.buffer_minutes))
                )
                clock += self.rules.buffer_minutes

        return SequencedDay(
            day=day,
            appointments=scheduled,
            total_distance_m=total_distance,
            total_travel_minutes=total_travel,
            total_minutes=clock - self.rules.start_minute,
            timeline=timeline,
            method=outcome.method if outcome is not None else INSERTION_METHOD,
            late_appointment_ids=late,
        )

    def sequence_days(
        self,
        clusters: Sequence[DayCluster],
        base: Waypoint,
        *,
        max_workers: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[SequencedDay]:
        """Sequence independent days concurrently, results in input order."""

        if len(clusters) <= 1:
            return [self.sequence_day(cluster, base, cancel) for cluster in clusters]
        with ThreadPoolExecutor(max_workers=max_workers or self.travel.max_concurrency) as executor:
            return list(executor.map(lambda cluster: self.sequence_day(cluster, base, cancel), clusters))


def sequence_day(
    cluster: DayCluster,
    base: Waypoint,
    rules: BusinessRules | None = None,
    *,
    oracle: RouteOracle | None = None,
    travel: TravelTimeService | None = None,
    mode: TravelMode = TravelMode.DRIVING,
    cancel: CancellationToken | None = None,
) -> SequencedDay:
    """Order one day's stops and build its timeline."""

    sequencer = RouteSequencer(rules or BusinessRules(), travel=travel, oracle=oracle, mode=mode)
    return sequencer.sequence_day(cluster, base, cancel)
