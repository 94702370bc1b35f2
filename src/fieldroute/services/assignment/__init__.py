"""Backlog assignment exports."""

from .service import AssignmentResult, ResidualAppointment, assign_backlog
from .strategies import Strategy

__all__ = ["assign_backlog", "AssignmentResult", "ResidualAppointment", "Strategy"]
