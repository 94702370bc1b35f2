"""Serializers for scheduling outputs."""

from __future__ import annotations

import csv
import io
from datetime import date, time

from ...models.domain import DayCluster, TimelineSlot
from ..analysis.service import AnalysisReport
from ..assignment.service import AssignmentResult
from ..availability.service import SlotSearchResult


def _iso(value: date | time | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, time):
        return value.isoformat(timespec="minutes")
    return value.isoformat()


def timeline_slot_to_json(slot: TimelineSlot) -> dict:
    return {
        "kind": slot.kind,
        "start": _iso(slot.start),
        "end": _iso(slot.end),
        "appointment_id": slot.appointment_id,
        "travel_distance_m": slot.travel_distance_m,
        "travel_duration_min": slot.travel_duration_min,
    }


def cluster_to_json(cluster: DayCluster) -> dict:
    return {
        "date": _iso(cluster.day),
        "total_distance_m": cluster.total_distance_m,
        "total_travel_minutes": cluster.total_travel_minutes,
        "efficiency": cluster.efficiency,
        "appointments": [
            {
                "appointment_id": appointment.appointment_id,
                "sequence": sequence,
                "start_time": _iso(appointment.start_time),
                "end_time": _iso(appointment.end_time),
                "duration_minutes": appointment.duration_minutes,
                "priority": appointment.priority,
                "latitude": appointment.point.latitude,
                "longitude": appointment.point.longitude,
                "address": appointment.location.address,
            }
            for sequence, appointment in enumerate(cluster.appointments, start=1)
        ],
        "timeline": [timeline_slot_to_json(slot) for slot in cluster.timeline],
    }


def assignment_result_to_json(result: AssignmentResult) -> dict:
    summary = result.summary
    return {
        "clusters": [
            {**cluster_to_json(cluster), "method": result.methods.get(cluster.day)} for cluster in result.clusters
        ],
        "residual": [
            {
                "appointment_id": entry.appointment.appointment_id,
                "code": entry.code.value,
                "reason": entry.reason,
            }
            for entry in result.residual
        ],
        "summary": {
            "total_appointments": summary.total_appointments,
            "assigned_appointments": summary.assigned_appointments,
            "total_days": summary.total_days,
            "average_efficiency": round(summary.average_efficiency, 2),
            "total_distance_m": summary.total_distance_m,
            "total_travel_minutes": summary.total_travel_minutes,
        },
    }


def assignment_result_to_csv(result: AssignmentResult) -> str:
    """One row per scheduled stop; residual appointments follow with their code."""
    buffer = io.StringIO()
    fieldnames = [
        "date",
        "sequence",
        "appointment_id",
        "start_time",
        "end_time",
        "duration_minutes",
        "latitude",
        "longitude",
        "day_distance_m",
        "day_travel_minutes",
        "day_efficiency",
        "residual_code",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for cluster in result.clusters:
        for sequence, appointment in enumerate(cluster.appointments, start=1):
            writer.writerow(
                {
                    "date": _iso(cluster.day),
                    "sequence": sequence,
                    "appointment_id": appointment.appointment_id,
                    "start_time": _iso(appointment.start_time),
                    "end_time": _iso(appointment.end_time),
                    "duration_minutes": appointment.duration_minutes,
                    "latitude": appointment.point.latitude,
                    "longitude": appointment.point.longitude,
                    "day_distance_m": cluster.total_distance_m,
                    "day_travel_minutes": cluster.total_travel_minutes,
                    "day_efficiency": cluster.efficiency,
                    "residual_code": "",
                }
            )
    for entry in result.residual:
        appointment = entry.appointment
        writer.writerow(
            {
                "date": _iso(appointment.requested_date),
                "appointment_id": appointment.appointment_id,
                "duration_minutes": appointment.duration_minutes,
                "latitude": appointment.point.latitude,
                "longitude": appointment.point.longitude,
                "residual_code": entry.code.value,
            }
        )
    return buffer.getvalue()


def slot_result_to_json(result: SlotSearchResult) -> dict:
    return {
        "date": _iso(result.day),
        "reason": result.reason,
        "slots": [
            {
                "start": _iso(slot.start),
                "end": _iso(slot.end),
                "travel_before_minutes": slot.travel_before_minutes,
                "travel_after_minutes": slot.travel_after_minutes,
                "efficiency": slot.efficiency,
                "previous_appointment_id": slot.previous_appointment_id,
                "next_appointment_id": slot.next_appointment_id,
            }
            for slot in result.slots
        ],
    }


def analysis_report_to_json(report: AnalysisReport) -> dict:
    metrics = report.metrics
    return {
        "metrics": {
            "total_days": metrics.total_days,
            "total_appointments": metrics.total_appointments,
            "total_distance_km": metrics.total_distance_km,
            "total_travel_minutes": metrics.total_travel_minutes,
            "average_efficiency": metrics.average_efficiency,
            "average_utilization": metrics.average_utilization,
            "total_cost_eur": metrics.total_cost_eur,
            "total_co2_kg": metrics.total_co2_kg,
            "wasted_travel_minutes": metrics.wasted_travel_minutes,
            "savings_potential_eur": metrics.savings_potential_eur,
        },
        "days": [
            {
                "date": _iso(day.day),
                "appointments": day.appointments,
                "utilization_rate": day.utilization_rate,
                "efficiency": day.efficiency,
                "total_distance_km": day.total_distance_km,
                "travel_minutes": day.travel_minutes,
                "working_minutes": day.working_minutes,
                "average_leg_km": day.average_leg_km,
                "longest_leg_km": day.longest_leg_km,
                "total_cost_eur": round(day.total_cost_eur, 2),
                "co2_kg": day.co2_kg,
                "density_per_km2": day.density_per_km2,
                "wasted_travel_minutes": day.wasted_travel_minutes,
            }
            for day in report.days
        ],
        "recommendations": [
            {
                "category": item.category.value,
                "priority": item.priority.value,
                "title": item.title,
                "description": item.description,
                "days": [_iso(day) for day in item.days],
                "estimated_savings_eur": item.estimated_savings_eur,
                "estimated_minutes_saved": item.estimated_minutes_saved,
            }
            for item in report.recommendations
        ],
    }
