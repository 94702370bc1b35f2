"""Geospatial scheduling core for field-service appointments."""

from .services.analysis.service import analyze
from .services.assignment.service import assign_backlog
from .services.availability.service import find_slots
from .services.routing.sequencer import sequence_day

__all__ = ["find_slots", "assign_backlog", "sequence_day", "analyze"]
