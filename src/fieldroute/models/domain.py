"""Domain models for locations, appointments and technician days."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
from enum import Enum
from typing import Iterable, Iterator, Literal, Optional, Union

from ..config import Settings, settings
from ..errors import InvalidInputError

WEEKDAY_CODES = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
MINUTES_PER_DAY = 24 * 60


class TravelMode(str, Enum):
    DRIVING = "driving"
    BICYCLING = "bicycling"
    WALKING = "walking"
    TRANSIT = "transit"
    TWO_WHEELER = "two_wheeler"


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 coordinate pair in degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (_is_number(self.latitude) and _is_number(self.longitude)):
            raise InvalidInputError(f"Coordinates must be numeric, got ({self.latitude!r}, {self.longitude!r}).")
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise InvalidInputError("Coordinates must be finite numbers.")
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidInputError(f"Latitude {self.latitude} is outside [-90, 90].")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidInputError(f"Longitude {self.longitude} is outside [-180, 180].")

    @property
    def cache_id(self) -> str:
        # 4 decimals is roughly 11 m, close enough to share cached travel times.
        return f"{self.latitude:.4f},{self.longitude:.4f}"

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class ServiceLocation:
    """A customer address or dispatch base with resolved coordinates."""

    point: GeoPoint
    address: str = ""
    postal_code: str = ""
    city: str = ""
    location_id: Optional[str] = None

    @property
    def cache_id(self) -> str:
        return self.location_id or self.point.cache_id

    @property
    def label(self) -> str:
        return self.address or self.city or self.point.cache_id


@dataclass(frozen=True, slots=True)
class Appointment:
    """A field-service visit.

    ``requested_date`` is the day the customer asked for. ``scheduled_date`` and
    ``start_time`` are filled in once the appointment is placed on a technician day;
    scheduling never mutates an appointment, it returns an updated copy.
    """

    appointment_id: str
    location: ServiceLocation
    duration_minutes: int
    requested_date: Optional[date] = None
    priority: int = 0
    scheduled_date: Optional[date] = None
    start_time: Optional[time] = None

    def __post_init__(self) -> None:
        if not self.appointment_id:
            raise InvalidInputError("Appointment id must not be empty.")
        if not isinstance(self.duration_minutes, int) or isinstance(self.duration_minutes, bool):
            raise InvalidInputError(f"Appointment {self.appointment_id}: duration must be an integer number of minutes.")
        if self.duration_minutes <= 0:
            raise InvalidInputError(
                f"Appointment {self.appointment_id}: duration must be positive, got {self.duration_minutes}."
            )
        if not isinstance(self.priority, int) or isinstance(self.priority, bool):
            raise InvalidInputError(f"Appointment {self.appointment_id}: priority must be an integer.")

    @property
    def point(self) -> GeoPoint:
        return self.location.point

    @property
    def end_time(self) -> Optional[time]:
        if self.start_time is None:
            return None
        return time_of(minutes_of(self.start_time) + self.duration_minutes)

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_date is not None

    def scheduled(self, day: date, start: Optional[time] = None) -> "Appointment":
        return replace(self, scheduled_date=day, start_time=start)

    def unscheduled(self) -> "Appointment":
        return replace(self, scheduled_date=None, start_time=None)


Waypoint = Union[GeoPoint, ServiceLocation, Appointment]


def base_from_settings(config: Settings | None = None) -> ServiceLocation:
    """Dispatch base configured for the deployment."""

    config = config or settings
    return ServiceLocation(point=GeoPoint(config.base_latitude, config.base_longitude), location_id="base")


def resolve_point(waypoint: Waypoint) -> GeoPoint:
    """Resolve any supported waypoint shape to its coordinates."""

    match waypoint:
        case GeoPoint():
            return waypoint
        case ServiceLocation(point=point):
            return point
        case Appointment(location=location):
            return location.point
        case _:
            raise InvalidInputError(f"Unsupported waypoint type: {type(waypoint).__name__}.")


def waypoint_cache_id(waypoint: Waypoint) -> str:
    match waypoint:
        case GeoPoint():
            return waypoint.cache_id
        case ServiceLocation():
            return waypoint.cache_id
        case Appointment(location=location):
            return location.cache_id
        case _:
            raise InvalidInputError(f"Unsupported waypoint type: {type(waypoint).__name__}.")


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def time_of(minutes: int) -> time:
    minutes = int(minutes) % MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def parse_clock(value: str) -> time:
    try:
        hours, minutes = (int(part) for part in value.split(":"))
        return time(hours, minutes)
    except (ValueError, TypeError) as exc:
        raise InvalidInputError(f"Invalid clock time '{value}', expected HH:MM.") from exc


@dataclass(frozen=True, slots=True)
class BusinessRules:
    """Service window and capacity limits for one technician day."""

    day_start: time = time(9, 30)
    day_end: time = time(16, 0)
    working_weekdays: tuple[int, ...] = (0, 1, 2, 3, 4)
    max_appointments_per_day: int = 5
    max_radius_km: float = 20.0
    default_duration_minutes: int = 60
    buffer_minutes: int = 15

    def __post_init__(self) -> None:
        if minutes_of(self.day_end) <= minutes_of(self.day_start):
            raise InvalidInputError(f"Day end {self.day_end} must be after day start {self.day_start}.")
        if self.max_appointments_per_day < 1:
            raise InvalidInputError("max_appointments_per_day must be >= 1")
        if self.max_radius_km <= 0:
            raise InvalidInputError("max_radius_km must be > 0")
        if self.default_duration_minutes < 1:
            raise InvalidInputError("default_duration_minutes must be >= 1")
        if self.buffer_minutes < 0:
            raise InvalidInputError("buffer_minutes must be >= 0")
        if any(day not in range(7) for day in self.working_weekdays):
            raise InvalidInputError(f"Working weekdays must be within 0-6, got {self.working_weekdays}.")

    @property
    def start_minute(self) -> int:
        return minutes_of(self.day_start)

    @property
    def end_minute(self) -> int:
        return minutes_of(self.day_end)

    @property
    def window_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.working_weekdays

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "BusinessRules":
        config = config or settings
        try:
            weekdays = tuple(sorted({WEEKDAY_CODES.index(code[:3].upper()) for code in config.working_days}))
        except ValueError as exc:
            raise InvalidInputError(f"Unknown working day in {config.working_days}.") from exc
        return cls(
            day_start=parse_clock(config.day_start),
            day_end=parse_clock(config.day_end),
            working_weekdays=weekdays,
            max_appointments_per_day=config.max_appointments_per_day,
            max_radius_km=config.max_service_radius_km,
            default_duration_minutes=config.default_appointment_minutes,
            buffer_minutes=config.buffer_minutes,
        )


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidInputError(f"Date range end {self.end} is before start {self.start}.")

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end


SlotKind = Literal["appointment", "travel", "idle"]


@dataclass(slots=True)
class TimelineSlot:
    kind: SlotKind
    start: time
    end: time
    appointment_id: Optional[str] = None
    travel_distance_m: Optional[int] = None
    travel_duration_min: Optional[int] = None

    @property
    def duration_minutes(self) -> int:
        return (minutes_of(self.end) - minutes_of(self.start)) % MINUTES_PER_DAY


@dataclass(slots=True)
class DayCluster:
    """Appointments assigned to one technician day; the cluster owns their order."""

    day: date
    appointments: list[Appointment] = field(default_factory=list)
    total_distance_m: int = 0
    total_travel_minutes: int = 0
    efficiency: int = 0
    timeline: list[TimelineSlot] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.appointments)

    def appointment_ids(self) -> list[str]:
        return [appointment.appointment_id for appointment in self.appointments]

    def contains(self, appointment_id: str) -> bool:
        return any(appointment.appointment_id == appointment_id for appointment in self.appointments)


class Schedule:
    """Day clusters keyed by date with single-cluster membership per appointment."""

    def __init__(self, days: Iterable[date] = ()) -> None:
        self._clusters: dict[date, DayCluster] = {day: DayCluster(day=day) for day in days}
        self._membership: dict[str, date] = {}

    def cluster(self, day: date) -> DayCluster:
        if day not in self._clusters:
            self._clusters[day] = DayCluster(day=day)
        return self._clusters[day]

    def cluster_of(self, appointment_id: str) -> DayCluster | None:
        day = self._membership.get(appointment_id)
        return self._clusters.get(day) if day is not None else None

    def assign(self, appointment: Appointment, day: date, position: int | None = None) -> DayCluster:
        """Place ``appointment`` on ``day``, removing it from any cluster it was on.

        ``position`` is the index in the day's visiting order; by default the
        appointment goes last.
        """

        self.remove(appointment.appointment_id)
        cluster = self.cluster(day)
        scheduled = appointment.scheduled(day, appointment.start_time)
        if position is None:
            cluster.appointments.append(scheduled)
        else:
            cluster.appointments.insert(position, scheduled)
        self._membership[appointment.appointment_id] = day
        return cluster

    def remove(self, appointment_id: str) -> Appointment | None:
        day = self._membership.pop(appointment_id, None)
        if day is None:
            return None
        cluster = self._clusters[day]
        for index, existing in enumerate(cluster.appointments):
            if existing.appointment_id == appointment_id:
                return cluster.appointments.pop(index)
        return None

    def clusters(self, *, include_empty: bool = False) -> list[DayCluster]:
        return [
            self._clusters[day]
            for day in sorted(self._clusters)
            if include_empty or self._clusters[day].appointments
        ]

    def __contains__(self, appointment_id: object) -> bool:
        return appointment_id in self._membership
