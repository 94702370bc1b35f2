"""Thread-safe TTL cache for travel-time lookups."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from ...config import settings
from .models import TravelLeg

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]
DEFAULT_MAX_ENTRIES = 10_000


class TravelTimeCache:
    """Oracle answers keyed by ``(origin_id, destination_id, mode)``.

    Shared between concurrent clustering runs, so every read and write goes
    through one lock.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is None:
            ttl_seconds = settings.travel_cache_ttl_seconds
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, tuple[float, TravelLeg]] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(origin_id: str, destination_id: str, mode: str) -> CacheKey:
        return (origin_id, destination_id, mode)

    def get(self, key: CacheKey) -> TravelLeg | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, leg = entry
            if expires_at <= self._clock():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return leg

    def set(self, key: CacheKey, leg: TravelLeg) -> None:
        if self.ttl_seconds == 0:
            return
        with self._lock:
            if len(self._entries) >= self.max_entries:
                self._evict_locked()
            self._entries[key] = (self._clock() + self.ttl_seconds, leg)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_locked(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            # Oldest insertions first; dicts keep insertion order.
            overflow = len(self._entries) - self.max_entries + 1
            for key in list(self._entries)[:overflow]:
                del self._entries[key]
        logger.debug(f"Evicted travel cache entries, {len(self._entries)} remain")
