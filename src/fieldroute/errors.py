"""Exception types and residual codes for the scheduling core."""

from __future__ import annotations

from enum import Enum


class SchedulingError(Exception):
    """Base class for errors raised by the scheduling core."""


class InvalidInputError(SchedulingError, ValueError):
    """Malformed coordinates, durations, dates or rules. Raised before any work starts."""


class OracleUnavailableError(SchedulingError, ConnectionError):
    """A routing oracle failed (network, timeout, rate limit or a bad payload)."""


class OperationCancelled(SchedulingError):
    """The caller's cancellation token fired while work was in flight."""


class ResidualCode(str, Enum):
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    OUT_OF_RADIUS = "OUT_OF_RADIUS"
    NO_FEASIBLE_WINDOW = "NO_FEASIBLE_WINDOW"
    CANCELLED = "CANCELLED"
