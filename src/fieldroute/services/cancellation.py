"""Caller-supplied cancellation for long-running batch work."""

from __future__ import annotations

import threading
import time
from typing import Callable

from ..errors import OperationCancelled


class CancellationToken:
    """Fires when ``cancel()`` is called or the optional deadline passes."""

    def __init__(
        self,
        deadline_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("Operation cancelled by caller.")
