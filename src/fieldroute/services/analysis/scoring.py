"""Efficiency scoring shared by slot search, day clusters and reports."""

from __future__ import annotations

import math
from typing import Sequence

from ...models.domain import GeoPoint
from ..geospatial import distance_km

MAX_SCORE = 100
MAX_TRAVEL_PENALTY = 50
DENSITY_BONUS = 20
DENSITY_RADIUS_KM = 5.0


def efficiency_score(travel_minutes: float, *, dense: bool = False) -> int:
    """Score in [0, 100]: 10 points off per full 10 travel minutes, at most 50.

    ``dense`` adds a bonus for stops packed close together.
    """

    penalty = min(MAX_TRAVEL_PENALTY, math.floor(max(travel_minutes, 0) / 10) * 10)
    score = MAX_SCORE - penalty
    if dense:
        score += DENSITY_BONUS
    return int(max(0, min(MAX_SCORE, score)))


def is_dense(points: Sequence[GeoPoint]) -> bool:
    """True for 3+ stops where every predecessor/successor pair is within the density radius."""

    if len(points) < 3:
        return False
    return all(
        distance_km(points[index - 1], points[index + 1]) < DENSITY_RADIUS_KM
        for index in range(1, len(points) - 1)
    )
