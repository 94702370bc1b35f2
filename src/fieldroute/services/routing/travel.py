"""Travel-time lookups with caching, bounded retries and a closed-form fallback."""

from __future__ import annotations

import logging
import math
import time as _time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import time
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import TravelMode, Waypoint, resolve_point, waypoint_cache_id
from ..cancellation import CancellationToken
from ..geospatial import PEAK_HOURS, distance_km, distance_m, estimate_travel_minutes
from .cache import TravelTimeCache
from .models import TravelLeg, TravelTimeOracle

logger = logging.getLogger(__name__)

# How often a waiting batch re-checks cancellation.
POLL_INTERVAL_SECONDS = 0.05

# (origin, destination, departure)
LegRequest = tuple[Waypoint, Waypoint, Optional[time]]


class TravelTimeService:
    """Answers "how long from A to B" for the scheduling core.

    The oracle is optional. When it is missing, failing or slow the service
    degrades to :func:`estimate_travel_minutes` instead of raising.
    """

    def __init__(
        self,
        oracle: TravelTimeOracle | None = None,
        *,
        cache: TravelTimeCache | None = None,
        max_attempts: int | None = None,
        max_concurrency: int | None = None,
        call_timeout: float | None = None,
        peak_hours: Sequence[tuple[int, int]] = PEAK_HOURS,
    ) -> None:
        self.oracle = oracle
        self.cache = cache
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.oracle_max_attempts)
        self.max_concurrency = max(
            1, max_concurrency if max_concurrency is not None else settings.oracle_max_concurrency
        )
        self.call_timeout = call_timeout if call_timeout is not None else settings.oracle_call_timeout_seconds
        self.peak_hours = tuple(peak_hours)

    def estimate(
        self,
        origin: Waypoint,
        destination: Waypoint,
        mode: TravelMode = TravelMode.DRIVING,
        departure: time | None = None,
    ) -> TravelLeg:
        a, b = resolve_point(origin), resolve_point(destination)
        minutes = estimate_travel_minutes(distance_km(a, b), mode, departure, peak_hours=self.peak_hours)
        return TravelLeg(distance_m=distance_m(a, b), duration_min=minutes, source="estimate")

    def leg(
        self,
        origin: Waypoint,
        destination: Waypoint,
        mode: TravelMode = TravelMode.DRIVING,
        departure: time | None = None,
        cancel: CancellationToken | None = None,
    ) -> TravelLeg:
        if self.oracle is None:
            return self.estimate(origin, destination, mode, departure)

        key = TravelTimeCache.key(waypoint_cache_id(origin), waypoint_cache_id(destination), mode.value)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Travel cache hit {key[0]} -> {key[1]}")
                return TravelLeg(cached.distance_m, cached.duration_min, "cache")

        a, b = resolve_point(origin), resolve_point(destination)
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                distance, duration = self.oracle.travel(a, b, mode)
                leg = TravelLeg(
                    distance_m=int(round(distance)), duration_min=int(math.ceil(duration)), source="oracle"
                )
            except Exception as exc:
                # Any oracle failure counts as unavailable; the estimate covers it.
                last_error = exc
                logger.debug(
                    f"Travel-time oracle attempt {attempt}/{self.max_attempts} failed: {type(exc).__name__}: {exc}"
                )
                continue
            if self.cache is not None:
                self.cache.set(key, leg)
            return leg

        logger.warning(
            f"Travel-time oracle unavailable for {key[0]} -> {key[1]} ({last_error}); "
            "using closed-form estimate (degraded mode)."
        )
        return self.estimate(origin, destination, mode, departure)

    def travel_minutes(
        self,
        origin: Waypoint,
        destination: Waypoint,
        mode: TravelMode = TravelMode.DRIVING,
        departure: time | None = None,
        cancel: CancellationToken | None = None,
    ) -> int:
        return self.leg(origin, destination, mode, departure, cancel).duration_min

    def batch_legs(
        self,
        requests: Sequence[LegRequest],
        mode: TravelMode = TravelMode.DRIVING,
        cancel: CancellationToken | None = None,
    ) -> list[TravelLeg]:
        """Resolve many legs concurrently, in request order.

        A lookup that outlives ``call_timeout`` is replaced by the estimate; the
        worker is abandoned rather than waited for.
        """
        if not requests:
            return []
        if self.oracle is None:
            return [self.estimate(origin, destination, mode, departure) for origin, destination, departure in requests]
        if cancel is not None:
            cancel.raise_if_cancelled()

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrency, len(requests)), thread_name_prefix="travel-oracle"
        )
        try:
            futures = [
                executor.submit(self.leg, origin, destination, mode, departure, cancel)
                for origin, destination, departure in requests
            ]
            return [
                self._await(future, origin, destination, mode, departure, cancel)
                for future, (origin, destination, departure) in zip(futures, requests)
            ]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def batch_travel_minutes(
        self,
        requests: Sequence[LegRequest],
        mode: TravelMode = TravelMode.DRIVING,
        cancel: CancellationToken | None = None,
    ) -> list[int]:
        return [leg.duration_min for leg in self.batch_legs(requests, mode, cancel)]

    def _await(
        self,
        future: Future,
        origin: Waypoint,
        destination: Waypoint,
        mode: TravelMode,
        departure: time | None,
        cancel: CancellationToken | None,
    ) -> TravelLeg:
        deadline = _time.monotonic() + self.call_timeout
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            remaining = deadline - _time.monotonic()
            if remaining <= 0:
                future.cancel()
                logger.warning(
                    f"Travel-time lookup exceeded {self.call_timeout:.1f}s; using closed-form estimate (degraded mode)."
                )
                return self.estimate(origin, destination, mode, departure)
            try:
                return future.result(timeout=min(remaining, POLL_INTERVAL_SECONDS))
            except FuturesTimeoutError:
                continue
