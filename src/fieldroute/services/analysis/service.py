"""Per-day and aggregate schedule metrics with actionable recommendations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Sequence

from ...config import Settings, settings
from ...models.domain import BusinessRules, DayCluster, TravelMode
from ..geospatial import ASSUMED_SPEEDS_KMH, convex_hull_area_km2, distance_km
from .scoring import efficiency_score, is_dense

logger = logging.getLogger(__name__)

LOW_UTILIZATION_RATE = 0.6
LOW_UTILIZATION_MAX_APPOINTMENTS = 5
FULL_UTILIZATION_RATE = 0.95
LONG_LEG_KM = 25.0
LOW_EFFICIENCY = 70
IDEAL_TRAVEL_RATIO = 0.8
IDEAL_TRAVEL_SLACK_MINUTES = 30
LABOR_COST_PER_WASTED_MINUTE = 0.5
# Share of distance a reordered inefficient day is expected to save.
REORDER_DISTANCE_SAVING = 0.2


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class Category(str, Enum):
    ROUTE_EFFICIENCY = "route_efficiency"
    COST_SAVING = "cost_saving"
    LONG_LEG = "long_leg"
    LOW_UTILIZATION = "low_utilization"
    ADD_BUFFER = "add_buffer"


@dataclass(frozen=True, slots=True)
class CostModel:
    fuel_cost_per_km: float = 0.20
    technician_hourly_rate: float = 45.0
    co2_kg_per_km: float = 0.12

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "CostModel":
        config = config or settings
        return cls(
            fuel_cost_per_km=config.fuel_cost_per_km,
            technician_hourly_rate=config.technician_hourly_rate,
            co2_kg_per_km=config.co2_kg_per_km,
        )

    def fuel_cost(self, distance_km: float) -> float:
        return distance_km * self.fuel_cost_per_km

    def time_cost(self, minutes: float) -> float:
        return minutes / 60.0 * self.technician_hourly_rate

    def co2(self, distance_km: float) -> float:
        return distance_km * self.co2_kg_per_km


@dataclass(slots=True)
class DayAnalysis:
    day: date
    appointments: int
    utilization_rate: float
    efficiency: int
    total_distance_km: float
    travel_minutes: int
    working_minutes: int
    average_leg_km: float
    longest_leg_km: float
    fuel_cost_eur: float
    time_cost_eur: float
    co2_kg: float
    density_per_km2: float
    wasted_travel_minutes: int

    @property
    def total_cost_eur(self) -> float:
        return self.fuel_cost_eur + self.time_cost_eur


@dataclass(slots=True)
class Recommendation:
    category: Category
    priority: Priority
    title: str
    description: str
    days: list[date] = field(default_factory=list)
    estimated_savings_eur: Optional[float] = None
    estimated_minutes_saved: Optional[int] = None


@dataclass(slots=True)
class AggregateMetrics:
    total_days: int = 0
    total_appointments: int = 0
    total_distance_km: float = 0.0
    total_travel_minutes: int = 0
    average_efficiency: float = 0.0
    average_utilization: float = 0.0
    total_cost_eur: float = 0.0
    total_co2_kg: float = 0.0
    wasted_travel_minutes: int = 0
    savings_potential_eur: float = 0.0


@dataclass(slots=True)
class AnalysisReport:
    days: list[DayAnalysis] = field(default_factory=list)
    metrics: AggregateMetrics = field(default_factory=AggregateMetrics)
    recommendations: list[Recommendation] = field(default_factory=list)

    def recommendation(self, category: Category | str) -> Recommendation | None:
        return next((item for item in self.recommendations if item.category == category), None)


def _legs_km(cluster: DayCluster) -> list[float]:
    legs = [
        slot.travel_distance_m / 1000.0
        for slot in cluster.timeline
        if slot.kind == "travel" and slot.travel_distance_m is not None
    ]
    if legs or len(cluster.appointments) < 2:
        return legs
    # Unsequenced cluster: straight lines between consecutive stops.
    points = [appointment.point for appointment in cluster.appointments]
    return [distance_km(a, b) for a, b in zip(points, points[1:])]


def _between_stops_km(cluster: DayCluster, legs: Sequence[float]) -> list[float]:
    # With a timeline the first and last legs touch the base.
    if cluster.timeline and len(legs) >= 2:
        return list(legs[1:-1])
    return list(legs)


def wasted_travel_minutes(travel_minutes: float) -> int:
    """Travel a well-clustered day would not have needed; never more than the travel itself."""

    ideal = min(travel_minutes * IDEAL_TRAVEL_RATIO, travel_minutes - IDEAL_TRAVEL_SLACK_MINUTES)
    wasted = max(0.0, travel_minutes - max(0.0, ideal))
    return int(round(min(wasted, travel_minutes)))


def analyze_day(cluster: DayCluster, rules: BusinessRules, costs: CostModel) -> DayAnalysis:
    legs = _legs_km(cluster)
    between = _between_stops_km(cluster, legs)
    total_km = cluster.total_distance_m / 1000.0 if cluster.total_distance_m else sum(legs)
    travel = cluster.total_travel_minutes
    working = sum(appointment.duration_minutes for appointment in cluster.appointments)
    points = [appointment.point for appointment in cluster.appointments]
    efficiency = cluster.efficiency if cluster.timeline else efficiency_score(travel, dense=is_dense(points))

    return DayAnalysis(
        day=cluster.day,
        appointments=len(cluster.appointments),
        utilization_rate=len(cluster.appointments) / rules.max_appointments_per_day,
        efficiency=efficiency,
        total_distance_km=round(total_km, 3),
        travel_minutes=travel,
        working_minutes=working,
        average_leg_km=round(sum(between) / len(between), 3) if between else 0.0,
        longest_leg_km=round(max(legs), 3) if legs else 0.0,
        fuel_cost_eur=round(costs.fuel_cost(total_km), 2),
        time_cost_eur=round(costs.time_cost(travel + working), 2),
        co2_kg=round(costs.co2(total_km), 2),
        density_per_km2=round(len(points) / max(convex_hull_area_km2(points), 1.0), 2),
        wasted_travel_minutes=wasted_travel_minutes(travel),
    )


def _waste_cost(day: DayAnalysis, costs: CostModel) -> float:
    wasted_km = day.wasted_travel_minutes / 60.0 * ASSUMED_SPEEDS_KMH[TravelMode.DRIVING]
    return day.wasted_travel_minutes * LABOR_COST_PER_WASTED_MINUTE + costs.fuel_cost(wasted_km)


def _recommendations(
    days: Sequence[DayAnalysis],
    savings_potential: float,
    threshold: float,
    costs: CostModel,
) -> list[Recommendation]:
    found: dict[Category, Recommendation] = {}

    inefficient = [day for day in days if day.efficiency < LOW_EFFICIENCY]
    if inefficient:
        savings = sum(costs.fuel_cost(day.total_distance_km * REORDER_DISTANCE_SAVING) for day in inefficient)
        savings += sum(day.wasted_travel_minutes * LABOR_COST_PER_WASTED_MINUTE for day in inefficient)
        found[Category.ROUTE_EFFICIENCY] = Recommendation(
            category=Category.ROUTE_EFFICIENCY,
            priority=Priority.HIGH if savings > threshold else Priority.MEDIUM,
            title="Optimize inefficient routes",
            description=(
                f"{len(inefficient)} day(s) score below {LOW_EFFICIENCY} on route efficiency. "
                "Reordering or regrouping stops could save travel time."
            ),
            days=[day.day for day in inefficient],
            estimated_savings_eur=round(savings, 2),
            estimated_minutes_saved=sum(day.wasted_travel_minutes for day in inefficient),
        )

    if savings_potential > threshold:
        found[Category.COST_SAVING] = Recommendation(
            category=Category.COST_SAVING,
            priority=Priority.HIGH,
            title="Significant cost reduction opportunity",
            description=f"Tighter routes could save about €{savings_potential:.2f} in labour and fuel.",
            days=[day.day for day in days if day.wasted_travel_minutes > 0],
            estimated_savings_eur=round(savings_potential, 2),
            estimated_minutes_saved=sum(day.wasted_travel_minutes for day in days),
        )

    long_legs = [day for day in days if day.longest_leg_km > LONG_LEG_KM]
    if long_legs:
        found[Category.LONG_LEG] = Recommendation(
            category=Category.LONG_LEG,
            priority=Priority.MEDIUM,
            title="Split long legs",
            description=(
                f"{len(long_legs)} day(s) include a single leg over {LONG_LEG_KM:g} km. "
                "Move the outlying stop to a day with nearby appointments."
            ),
            days=[day.day for day in long_legs],
        )

    underused = [
        day
        for day in days
        if day.utilization_rate < LOW_UTILIZATION_RATE and day.appointments < LOW_UTILIZATION_MAX_APPOINTMENTS
    ]
    if underused:
        found[Category.LOW_UTILIZATION] = Recommendation(
            category=Category.LOW_UTILIZATION,
            priority=Priority.MEDIUM,
            title="Increase capacity utilization",
            description=(
                f"{len(underused)} day(s) are below {LOW_UTILIZATION_RATE:.0%} utilization. "
                "Consolidate appointments or open the free slots for booking."
            ),
            days=[day.day for day in underused],
        )

    full = [day for day in days if day.utilization_rate >= FULL_UTILIZATION_RATE]
    if full:
        found[Category.ADD_BUFFER] = Recommendation(
            category=Category.ADD_BUFFER,
            priority=Priority.LOW,
            title="Add buffer time",
            description=(
                f"{len(full)} day(s) are fully booked. Extra buffer between visits absorbs overruns and traffic."
            ),
            days=[day.day for day in full],
        )

    order = list(Category)
    return sorted(found.values(), key=lambda item: (PRIORITY_RANK[item.priority], order.index(item.category)))


def analyze(
    clusters: Sequence[DayCluster],
    rules: BusinessRules | None = None,
    *,
    cost_threshold_eur: float | None = None,
    costs: CostModel | None = None,
) -> AnalysisReport:
    """Score a finished schedule and derive ranked recommendations."""

    rules = rules or BusinessRules()
    costs = costs or CostModel.from_settings()
    threshold = cost_threshold_eur if cost_threshold_eur is not None else settings.recommendation_cost_threshold_eur

    days = [analyze_day(cluster, rules, costs) for cluster in sorted(clusters, key=lambda cluster: cluster.day)]
    if not days:
        return AnalysisReport()

    savings_potential = sum(_waste_cost(day, costs) for day in days)
    metrics = AggregateMetrics(
        total_days=len(days),
        total_appointments=sum(day.appointments for day in days),
        total_distance_km=round(sum(day.total_distance_km for day in days), 3),
        total_travel_minutes=sum(day.travel_minutes for day in days),
        average_efficiency=round(sum(day.efficiency for day in days) / len(days), 2),
        average_utilization=round(sum(day.utilization_rate for day in days) / len(days), 4),
        total_cost_eur=round(sum(day.total_cost_eur for day in days), 2),
        total_co2_kg=round(sum(day.co2_kg for day in days), 2),
        wasted_travel_minutes=sum(day.wasted_travel_minutes for day in days),
        savings_potential_eur=round(savings_potential, 2),
    )
    recommendations = _recommendations(days, savings_potential, threshold, costs)
    logger.info(
        f"Analyzed {metrics.total_days} days: average efficiency {metrics.average_efficiency}, "
        f"{len(recommendations)} recommendations"
    )
    return AnalysisReport(days=days, metrics=metrics, recommendations=recommendations)
