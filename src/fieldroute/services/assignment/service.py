"""Greedy assignment of an appointment backlog to technician days."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Mapping, Sequence

from ...errors import InvalidInputError, OperationCancelled, ResidualCode
from ...models.domain import (
    Appointment,
    BusinessRules,
    DateRange,
    DayCluster,
    Schedule,
    TravelMode,
    Waypoint,
    resolve_point,
)
from ..cancellation import CancellationToken
from ..geospatial import distance_km
from ..routing.sequencer import RouteSequencer, SequencedDay
from ..routing.travel import TravelTimeService
from .strategies import Strategy, candidate_days, sort_backlog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResidualAppointment:
    appointment: Appointment
    code: ResidualCode
    reason: str


@dataclass(slots=True)
class AssignmentSummary:
    total_appointments: int = 0
    assigned_appointments: int = 0
    total_days: int = 0
    average_efficiency: float = 0.0
    total_distance_m: int = 0
    total_travel_minutes: int = 0


@dataclass(slots=True)
class AssignmentResult:
    clusters: list[DayCluster] = field(default_factory=list)
    residual: list[ResidualAppointment] = field(default_factory=list)
    summary: AssignmentSummary = field(default_factory=AssignmentSummary)
    methods: dict[date, str] = field(default_factory=dict)

    def restart_backlog(self) -> list[Appointment]:
        """Residual appointments worth retrying; out-of-radius ones never fit."""
        return [
            entry.appointment.unscheduled()
            for entry in self.residual
            if entry.code != ResidualCode.OUT_OF_RADIUS
        ]

    def residual_ids(self, code: ResidualCode | None = None) -> list[str]:
        return [
            entry.appointment.appointment_id
            for entry in self.residual
            if code is None or entry.code == code
        ]


def _validate(
    appointments: Sequence[Appointment],
    date_range: DateRange,
    base: Waypoint,
    rules: BusinessRules,
    booked: Mapping[date, Sequence[Appointment]] | None,
) -> None:
    if not isinstance(date_range, DateRange):
        raise InvalidInputError("date_range must be a DateRange.")
    if not isinstance(rules, BusinessRules):
        raise InvalidInputError("rules must be BusinessRules.")
    resolve_point(base)
    seen: set[str] = set()
    for appointment in appointments:
        if not isinstance(appointment, Appointment):
            raise InvalidInputError(f"Backlog entries must be appointments, got {type(appointment).__name__}.")
        if appointment.appointment_id in seen:
            raise InvalidInputError(f"Duplicate appointment id {appointment.appointment_id} in backlog.")
        seen.add(appointment.appointment_id)
    for day, existing in (booked or {}).items():
        for appointment in existing:
            if appointment.appointment_id in seen:
                raise InvalidInputError(
                    f"Appointment {appointment.appointment_id} is both booked on {day} and in the backlog."
                )


class AssignmentEngine:
    """Places backlog appointments on working days and sequences each day."""

    def __init__(
        self,
        rules: BusinessRules,
        *,
        travel: TravelTimeService | None = None,
        sequencer: RouteSequencer | None = None,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> None:
        self.rules = rules
        self.travel = travel or (sequencer.travel if sequencer is not None else TravelTimeService())
        self.sequencer = sequencer or RouteSequencer(rules, travel=self.travel, mode=mode)
        self.mode = mode
        # Feasibility plans in insertion order; the build step reuses them.
        self._insertion_plans: dict[date, SequencedDay] = {}

    def find_insertion(
        self,
        schedule: Schedule,
        day: date,
        appointment: Appointment,
        base: Waypoint,
        cancel: CancellationToken | None = None,
    ) -> tuple[int | None, bool]:
        """Return ``(position, day_full)`` for adding ``appointment`` to ``day``.

        ``position`` is where the appointment goes in the day's visiting order,
        or ``None`` when no position keeps the day inside the window with every
        fixed start on time. Without fixed starts only the end is tried.
        """

        members = list(schedule.cluster(day).appointments)
        if len(members) >= self.rules.max_appointments_per_day:
            return None, True

        fixed = appointment.start_time is not None or any(member.start_time is not None for member in members)
        positions = range(len(members), -1, -1) if fixed else [len(members)]
        for position in positions:
            ordered = [*members[:position], appointment, *members[position:]]
            plan = self.sequencer.build_plan(day, ordered, base, cancel=cancel)
            if plan.fits(self.rules):
                self._insertion_plans[day] = plan
                return position, False
            logger.debug(
                f"{appointment.appointment_id} at position {position} on {day}: {plan.total_minutes} of "
                f"{self.rules.window_minutes} minutes, late {plan.late_appointment_ids}"
            )
        return None, False

    def assign(
        self,
        appointments: Sequence[Appointment],
        date_range: DateRange,
        base: Waypoint,
        strategy: Strategy | str = Strategy.BALANCED,
        *,
        booked: Mapping[date, Sequence[Appointment]] | None = None,
        cancel: CancellationToken | None = None,
    ) -> AssignmentResult:
        _validate(appointments, date_range, base, self.rules, booked)
        strategy = Strategy.parse(strategy)
        base_point = resolve_point(base)
        self._insertion_plans = {}

        working_days = [day for day in date_range.days() if self.rules.is_working_day(day)]
        schedule = Schedule(working_days)
        for day, existing in (booked or {}).items():
            # Booked visits keep their times, so the day starts in start-time order.
            for appointment in sorted(existing, key=lambda a: (a.start_time is None, a.start_time or time.min)):
                schedule.assign(appointment, day)

        residual: list[ResidualAppointment] = []
        in_radius: list[Appointment] = []
        for appointment in appointments:
            radius = distance_km(base_point, appointment.point)
            if radius > self.rules.max_radius_km:
                residual.append(
                    ResidualAppointment(
                        appointment,
                        ResidualCode.OUT_OF_RADIUS,
                        f"{radius:.1f} km from base exceeds the {self.rules.max_radius_km:g} km radius.",
                    )
                )
            else:
                in_radius.append(appointment)

        ordered = sort_backlog(in_radius, base_point, strategy)
        logger.info(
            f"Assigning {len(ordered)} appointments over {len(working_days)} working days "
            f"({strategy.value}, {len(residual)} out of radius)"
        )

        for position, appointment in enumerate(ordered):
            try:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                entry = self._place(schedule, appointment, working_days, date_range, base, strategy, cancel)
            except OperationCancelled:
                logger.info(f"Assignment cancelled with {len(ordered) - position} appointments unplaced")
                residual.extend(
                    ResidualAppointment(pending, ResidualCode.CANCELLED, "Cancelled before placement.")
                    for pending in ordered[position:]
                )
                break
            if entry is not None:
                residual.append(entry)

        clusters, methods = self._sequence(schedule, base, cancel)
        return AssignmentResult(
            clusters=clusters,
            residual=residual,
            summary=_summarize(len(appointments), len(residual), clusters),
            methods=methods,
        )

    def _place(
        self,
        schedule: Schedule,
        appointment: Appointment,
        working_days: Sequence[date],
        date_range: DateRange,
        base: Waypoint,
        strategy: Strategy,
        cancel: CancellationToken | None,
    ) -> ResidualAppointment | None:
        reference = appointment.requested_date or date_range.start
        days = candidate_days(reference, working_days, strategy, requested=appointment.requested_date)
        if not days:
            return ResidualAppointment(
                appointment, ResidualCode.NO_FEASIBLE_WINDOW, "No working day in range to try."
            )

        full_days = 0
        for day in days:
            position, day_full = self.find_insertion(schedule, day, appointment, base, cancel)
            if position is not None:
                schedule.assign(appointment, day, position)
                return None
            full_days += day_full

        if full_days == len(days):
            return ResidualAppointment(
                appointment,
                ResidualCode.CAPACITY_EXCEEDED,
                f"All {len(days)} candidate days already hold {self.rules.max_appointments_per_day} appointments.",
            )
        return ResidualAppointment(
            appointment,
            ResidualCode.NO_FEASIBLE_WINDOW,
            f"No candidate day has room for {appointment.duration_minutes} minutes plus travel.",
        )

    def _sequence(
        self,
        schedule: Schedule,
        base: Waypoint,
        cancel: CancellationToken | None = None,
    ) -> tuple[list[DayCluster], dict[date, str]]:
        pending = schedule.clusters()
        plans = self.sequencer.sequence_days(pending, base, cancel=cancel)
        clusters: list[DayCluster] = []
        methods: dict[date, str] = {}
        for cluster, plan in zip(pending, plans):
            if not plan.fits(self.rules):
                fallback = self._insertion_plans.get(cluster.day)
                if fallback is None:
                    fallback = self.sequencer.plan(cluster.day, cluster.appointments, base, cancel=cancel)
                reason = (
                    f"misses fixed starts {plan.late_appointment_ids}"
                    if plan.late_appointment_ids
                    else f"needs {plan.total_minutes} minutes"
                )
                logger.info(f"Sequenced plan for {cluster.day} {reason}; keeping insertion order")
                plan = fallback
            clusters.append(plan.to_cluster())
            methods[cluster.day] = plan.method
        return clusters, methods


def _summarize(total: int, unplaced: int, clusters: Sequence[DayCluster]) -> AssignmentSummary:
    days = len(clusters)
    return AssignmentSummary(
        total_appointments=total,
        assigned_appointments=total - unplaced,
        total_days=days,
        average_efficiency=sum(cluster.efficiency for cluster in clusters) / days if days else 0.0,
        total_distance_m=sum(cluster.total_distance_m for cluster in clusters),
        total_travel_minutes=sum(cluster.total_travel_minutes for cluster in clusters),
    )


def assign_backlog(
    appointments: Sequence[Appointment],
    date_range: DateRange,
    base: Waypoint,
    strategy: Strategy | str = Strategy.BALANCED,
    rules: BusinessRules | None = None,
    *,
    travel: TravelTimeService | None = None,
    sequencer: RouteSequencer | None = None,
    booked: Mapping[date, Sequence[Appointment]] | None = None,
    cancel: CancellationToken | None = None,
    mode: TravelMode = TravelMode.DRIVING,
) -> AssignmentResult:
    """Pack ``appointments`` into day clusters over ``date_range``.

    Appointments that cannot be placed come back in ``residual`` with a code;
    ``restart_backlog()`` on the result feeds them into a later run.
    """

    engine = AssignmentEngine(rules or BusinessRules(), travel=travel, sequencer=sequencer, mode=mode)
    return engine.assign(appointments, date_range, base, strategy, booked=booked, cancel=cancel)
