"""Scheduling request/response schemas."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, time
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..errors import InvalidInputError
from ..models.domain import (
    Appointment,
    BusinessRules,
    DateRange,
    GeoPoint,
    ServiceLocation,
    TravelMode,
)
from ..services.analysis.service import AnalysisReport
from ..services.assignment.service import AssignmentResult
from ..services.assignment.strategies import Strategy
from ..services.availability.service import SlotSearchResult
from ..services.outputs.schedule_formatter import (
    analysis_report_to_json,
    assignment_result_to_json,
    slot_result_to_json,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: Type[ModelT], payload: Any) -> ModelT:
    """Validate ``payload``; schema violations surface as ``InvalidInputError``."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid {model.__name__}: {exc}") from exc


class LocationModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = ""
    postal_code: str = ""
    city: str = ""
    location_id: Optional[str] = None

    def to_domain(self) -> ServiceLocation:
        return ServiceLocation(
            point=GeoPoint(self.latitude, self.longitude),
            address=self.address,
            postal_code=self.postal_code,
            city=self.city,
            location_id=self.location_id,
        )


class AppointmentModel(BaseModel):
    appointment_id: str = Field(..., min_length=1)
    location: LocationModel
    duration_minutes: Optional[int] = Field(None, ge=1, description="Defaults to the business-rule duration.")
    requested_date: Optional[date] = None
    priority: int = 0
    start_time: Optional[time] = Field(None, description="Fixed start; required for existing bookings.")
    scheduled_date: Optional[date] = None

    def to_domain(self, rules: BusinessRules | None = None) -> Appointment:
        default_duration = (rules or BusinessRules()).default_duration_minutes
        return Appointment(
            appointment_id=self.appointment_id,
            location=self.location.to_domain(),
            duration_minutes=self.duration_minutes or default_duration,
            requested_date=self.requested_date,
            priority=self.priority,
            scheduled_date=self.scheduled_date,
            start_time=self.start_time,
        )


class BusinessRulesModel(BaseModel):
    """Overrides on top of the configured business rules."""

    day_start: Optional[time] = None
    day_end: Optional[time] = None
    working_weekdays: Optional[List[int]] = None
    max_appointments_per_day: Optional[int] = Field(None, ge=1)
    max_radius_km: Optional[float] = Field(None, gt=0)
    default_duration_minutes: Optional[int] = Field(None, ge=1)
    buffer_minutes: Optional[int] = Field(None, ge=0)

    def to_domain(self, defaults: BusinessRules | None = None) -> BusinessRules:
        overrides = self.model_dump(exclude_none=True)
        if "working_weekdays" in overrides:
            overrides["working_weekdays"] = tuple(overrides["working_weekdays"])
        return replace(defaults or BusinessRules.from_settings(), **overrides)


class SlotSearchRequest(BaseModel):
    target_date: date
    location: LocationModel
    duration_minutes: Optional[int] = Field(None, ge=1)
    existing: List[AppointmentModel] = Field(default_factory=list)
    rules: Optional[BusinessRulesModel] = None
    travel_mode: TravelMode = TravelMode.DRIVING
    base: Optional[LocationModel] = None
    max_results: Optional[int] = Field(None, ge=1)

    def to_domain(self, defaults: BusinessRules | None = None) -> dict:
        """Keyword arguments for ``find_slots``."""
        rules = self.rules.to_domain(defaults) if self.rules else (defaults or BusinessRules.from_settings())
        return {
            "day": self.target_date,
            "location": self.location.to_domain(),
            "duration": self.duration_minutes or rules.default_duration_minutes,
            "existing": [appointment.to_domain(rules) for appointment in self.existing],
            "rules": rules,
            "mode": self.travel_mode,
            "base": self.base.to_domain() if self.base else None,
            "max_results": self.max_results,
        }


class BacklogAssignmentRequest(BaseModel):
    appointments: List[AppointmentModel]
    start_date: date
    end_date: date
    base: LocationModel
    strategy: Strategy = Strategy.BALANCED
    rules: Optional[BusinessRulesModel] = None
    travel_mode: TravelMode = TravelMode.DRIVING
    booked: Dict[date, List[AppointmentModel]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_range(self) -> "BacklogAssignmentRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def to_domain(self, defaults: BusinessRules | None = None) -> dict:
        """Keyword arguments for ``assign_backlog``."""
        rules = self.rules.to_domain(defaults) if self.rules else (defaults or BusinessRules.from_settings())
        return {
            "appointments": [appointment.to_domain(rules) for appointment in self.appointments],
            "date_range": DateRange(self.start_date, self.end_date),
            "base": self.base.to_domain(),
            "strategy": self.strategy,
            "rules": rules,
            "booked": {
                day: [appointment.to_domain(rules) for appointment in appointments]
                for day, appointments in self.booked.items()
            },
            "mode": self.travel_mode,
        }


class SlotModel(BaseModel):
    start: str
    end: str
    travel_before_minutes: int
    travel_after_minutes: int
    efficiency: int = Field(..., ge=0, le=100)
    previous_appointment_id: Optional[str] = None
    next_appointment_id: Optional[str] = None


class SlotSearchResponse(BaseModel):
    date: str
    reason: Optional[str] = None
    slots: List[SlotModel]

    @classmethod
    def from_result(cls, result: SlotSearchResult) -> "SlotSearchResponse":
        return cls.model_validate(slot_result_to_json(result))


class TimelineSlotModel(BaseModel):
    kind: str
    start: str
    end: str
    appointment_id: Optional[str] = None
    travel_distance_m: Optional[int] = None
    travel_duration_min: Optional[int] = None


class ScheduledStopModel(BaseModel):
    appointment_id: str
    sequence: int
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_minutes: int
    priority: int
    latitude: float
    longitude: float
    address: str = ""


class DayClusterModel(BaseModel):
    date: str
    method: Optional[str] = None
    total_distance_m: int
    total_travel_minutes: int
    efficiency: int = Field(..., ge=0, le=100)
    appointments: List[ScheduledStopModel]
    timeline: List[TimelineSlotModel]


class ResidualModel(BaseModel):
    appointment_id: str
    code: str
    reason: str


class AssignmentSummaryModel(BaseModel):
    total_appointments: int
    assigned_appointments: int
    total_days: int
    average_efficiency: float
    total_distance_m: int
    total_travel_minutes: int


class BacklogAssignmentResponse(BaseModel):
    clusters: List[DayClusterModel]
    residual: List[ResidualModel]
    summary: AssignmentSummaryModel

    @classmethod
    def from_result(cls, result: AssignmentResult) -> "BacklogAssignmentResponse":
        return cls.model_validate(assignment_result_to_json(result))


class RecommendationModel(BaseModel):
    category: str
    priority: str
    title: str
    description: str
    days: List[str]
    estimated_savings_eur: Optional[float] = None
    estimated_minutes_saved: Optional[int] = None


class AnalysisResponse(BaseModel):
    metrics: Dict[str, float]
    days: List[Dict[str, Any]]
    recommendations: List[RecommendationModel]

    @classmethod
    def from_report(cls, report: AnalysisReport) -> "AnalysisResponse":
        return cls.model_validate(analysis_report_to_json(report))
