"""Backlog ordering and candidate-day selection per optimization strategy."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Sequence

from ...errors import InvalidInputError
from ...models.domain import Appointment, GeoPoint
from ..geospatial import distance_km


class Strategy(str, Enum):
    MINIMAL_TRAVEL = "minimal_travel"
    MAXIMUM_APPOINTMENTS = "maximum_appointments"
    BALANCED = "balanced"

    @classmethod
    def parse(cls, value: "Strategy | str") -> "Strategy":
        try:
            return cls(value)
        except ValueError:
            options = ", ".join(strategy.value for strategy in cls)
            raise InvalidInputError(f"Unknown strategy '{value}'. Expected one of: {options}.") from None


NEARBY_DAY_CANDIDATES: dict[Strategy, int] = {
    Strategy.MINIMAL_TRAVEL: 3,
    Strategy.BALANCED: 3,
    Strategy.MAXIMUM_APPOINTMENTS: 5,
}
PRIORITY_WEIGHT = 2


def sort_backlog(appointments: Sequence[Appointment], base: GeoPoint, strategy: Strategy) -> list[Appointment]:
    """Order the backlog for greedy placement. ``sorted`` is stable, so equal keys keep input order."""

    distances = {appointment.appointment_id: distance_km(base, appointment.point) for appointment in appointments}

    match strategy:
        case Strategy.MINIMAL_TRAVEL:
            return sorted(
                appointments,
                key=lambda appointment: (distances[appointment.appointment_id], -appointment.priority),
            )
        case Strategy.MAXIMUM_APPOINTMENTS:
            return sorted(
                appointments,
                key=lambda appointment: (
                    -appointment.priority,
                    appointment.requested_date is None,
                    appointment.requested_date or date.min,
                ),
            )
        case Strategy.BALANCED:
            return sorted(
                appointments,
                key=lambda appointment: -(PRIORITY_WEIGHT * appointment.priority - distances[appointment.appointment_id]),
            )
        case _:
            raise InvalidInputError(f"Unknown strategy '{strategy}'.")


def candidate_days(
    reference: date,
    working_days: Sequence[date],
    strategy: Strategy,
    *,
    requested: date | None = None,
) -> list[date]:
    """Days to try, in order: the requested day when it is a working day, then the nearest others.

    Nearby days are ranked by calendar distance to ``reference``; equal distances go to the earlier day.
    """

    days: list[date] = []
    if requested is not None and requested in working_days:
        days.append(requested)
    nearby = sorted(
        (day for day in working_days if day not in days),
        key=lambda day: (abs((day - reference).days), day),
    )
    days.extend(nearby[: NEARBY_DAY_CANDIDATES[strategy]])
    return days
