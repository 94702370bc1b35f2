"""Open-slot search for a single new appointment on one day."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional, Sequence

from ...errors import InvalidInputError
from ...models.domain import (
    Appointment,
    BusinessRules,
    TravelMode,
    Waypoint,
    minutes_of,
    resolve_point,
    time_of,
)
from ..analysis.scoring import efficiency_score, is_dense
from ..geospatial import distance_km
from ..routing.travel import LegRequest, TravelTimeService

logger = logging.getLogger(__name__)

EMPTY_DAY_STEP_MINUTES = 30
GAP_STEP_MINUTES = 15
DEFAULT_RECOMMENDATIONS = 3
MIN_RECOMMENDED_EFFICIENCY = 50
ARRIVAL_VARIANCE_RATIO = 0.2
DEFAULT_ARRIVAL_VARIANCE_MINUTES = 15


@dataclass(slots=True)
class Slot:
    day: date
    start: time
    end: time
    travel_before_minutes: int = 0
    travel_after_minutes: int = 0
    efficiency: int = 100
    previous_appointment_id: Optional[str] = None
    next_appointment_id: Optional[str] = None

    @property
    def total_travel_minutes(self) -> int:
        return self.travel_before_minutes + self.travel_after_minutes


@dataclass(slots=True)
class SlotSearchResult:
    day: date
    slots: list[Slot] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def found(self) -> bool:
        return bool(self.slots)

    def __iter__(self):
        return iter(self.slots)

    def __len__(self) -> int:
        return len(self.slots)


@dataclass(slots=True)
class _Gap:
    start: int
    end: int
    previous: Optional[Appointment]
    following: Optional[Appointment]


def _validate(duration: int, existing: Sequence[Appointment], location: Waypoint) -> None:
    if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
        raise InvalidInputError(f"Duration must be a positive number of minutes, got {duration!r}.")
    resolve_point(location)
    for appointment in existing:
        if appointment.start_time is None:
            raise InvalidInputError(f"Existing appointment {appointment.appointment_id} has no start time.")


def _gaps(bookings: Sequence[Appointment], rules: BusinessRules) -> list[_Gap]:
    gaps: list[_Gap] = []
    cursor = rules.start_minute
    previous: Optional[Appointment] = None
    for booking in bookings:
        start = minutes_of(booking.start_time)
        gaps.append(_Gap(cursor, start, previous, booking))
        cursor = max(cursor, start + booking.duration_minutes)
        previous = booking
    gaps.append(_Gap(cursor, rules.end_minute, previous, None))
    return [gap for gap in gaps if gap.end > gap.start]


def _empty_day_slots(day: date, duration: int, rules: BusinessRules) -> list[Slot]:
    slots = []
    for start in range(rules.start_minute, rules.end_minute, EMPTY_DAY_STEP_MINUTES):
        if start + duration > rules.end_minute:
            break
        slots.append(Slot(day=day, start=time_of(start), end=time_of(start + duration)))
    return slots


def find_slots(
    day: date,
    location: Waypoint,
    duration: int,
    existing: Sequence[Appointment],
    rules: BusinessRules,
    *,
    travel: TravelTimeService | None = None,
    mode: TravelMode = TravelMode.DRIVING,
    base: Waypoint | None = None,
    max_results: int | None = None,
) -> SlotSearchResult:
    """Enumerate start times for a ``duration``-minute visit at ``location`` on ``day``.

    Slots are ranked by efficiency, best first, ties broken by earliest start.
    When nothing fits the result is empty and ``reason`` says why.
    """

    _validate(duration, existing, location)
    travel = travel or TravelTimeService()

    if not rules.is_working_day(day):
        return SlotSearchResult(day=day, reason=f"{day.isoformat()} is not a working day.")
    if base is not None:
        radius = distance_km(resolve_point(base), resolve_point(location))
        if radius > rules.max_radius_km:
            return SlotSearchResult(
                day=day,
                reason=f"Location is {radius:.1f} km from base, outside the {rules.max_radius_km:g} km service radius.",
            )

    bookings = sorted(
        (appointment for appointment in existing if appointment.scheduled_date in (None, day)),
        key=lambda appointment: minutes_of(appointment.start_time),
    )
    if len(bookings) >= rules.max_appointments_per_day:
        return SlotSearchResult(
            day=day,
            reason=f"Day is fully booked ({len(bookings)} of {rules.max_appointments_per_day} appointments).",
        )
    if duration > rules.window_minutes:
        return SlotSearchResult(day=day, reason=f"A {duration}-minute visit does not fit the service window.")

    if not bookings:
        slots = _empty_day_slots(day, duration, rules)
    else:
        slots = _gap_slots(day, location, duration, bookings, rules, travel, mode)

    slots.sort(key=lambda slot: (-slot.efficiency, minutes_of(slot.start)))
    if max_results is not None:
        slots = slots[:max_results]
    if not slots:
        return SlotSearchResult(day=day, reason="No gap is long enough for the visit plus travel.")
    logger.debug(f"Found {len(slots)} slots on {day.isoformat()} for a {duration}-minute visit")
    return SlotSearchResult(day=day, slots=slots)


def _gap_slots(
    day: date,
    location: Waypoint,
    duration: int,
    bookings: Sequence[Appointment],
    rules: BusinessRules,
    travel: TravelTimeService,
    mode: TravelMode,
) -> list[Slot]:
    gaps = _gaps(bookings, rules)

    # Both legs of every gap in one concurrent batch.
    requests: list[LegRequest] = []
    for gap in gaps:
        if gap.previous is not None:
            requests.append((gap.previous, location, gap.previous.end_time))
        if gap.following is not None:
            requests.append((location, gap.following, gap.following.start_time))
    legs = iter(travel.batch_legs(requests, mode))

    point = resolve_point(location)
    slots: list[Slot] = []
    for gap in gaps:
        before = next(legs).duration_min if gap.previous is not None else 0
        after = next(legs).duration_min if gap.following is not None else 0
        if gap.end - gap.start < before + duration + after:
            continue

        dense = (
            gap.previous is not None
            and gap.following is not None
            and is_dense([gap.previous.point, point, gap.following.point])
        )
        efficiency = efficiency_score(before + after, dense=dense)
        start = gap.start + before
        while start + duration + after <= gap.end:
            slots.append(
                Slot(
                    day=day,
                    start=time_of(start),
                    end=time_of(start + duration),
                    travel_before_minutes=before,
                    travel_after_minutes=after,
                    efficiency=efficiency,
                    previous_appointment_id=gap.previous.appointment_id if gap.previous else None,
                    next_appointment_id=gap.following.appointment_id if gap.following else None,
                )
            )
            start += GAP_STEP_MINUTES
    return slots


def recommend_slots(
    slots: Sequence[Slot] | SlotSearchResult,
    count: int = DEFAULT_RECOMMENDATIONS,
    min_efficiency: int = MIN_RECOMMENDED_EFFICIENCY,
) -> list[Slot]:
    """Best ``count`` slots at or above ``min_efficiency``."""

    candidates = [slot for slot in slots if slot.efficiency >= min_efficiency]
    candidates.sort(key=lambda slot: (-slot.efficiency, minutes_of(slot.start)))
    return candidates[:count]


def arrival_window(slot: Slot, variance_minutes: int | None = None) -> tuple[time, time]:
    """Arrival window to quote to the customer.

    Travel estimates drift, so the window widens by a share of the travel
    before the visit, or a flat quarter hour when there was none.
    """

    if variance_minutes is None:
        if slot.travel_before_minutes > 0:
            variance_minutes = math.ceil(slot.travel_before_minutes * ARRIVAL_VARIANCE_RATIO)
        else:
            variance_minutes = DEFAULT_ARRIVAL_VARIANCE_MINUTES
    start = minutes_of(slot.start)
    return time_of(max(0, start - variance_minutes)), time_of(start + variance_minutes)
