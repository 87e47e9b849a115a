"""Requests-per-second accounting shared by all worker threads."""

import threading
import time
from typing import Callable, Optional

RPS_WINDOW_SECONDS = 60


class RequestCounter:
    """Counts requests and reports the rate once per window.

    A request that arrives once the window has aged past
    ``RPS_WINDOW_SECONDS`` closes it: the rate is computed from the count
    accumulated so far, the counter is reset to zero and that request is not
    counted.
    """

    def __init__(
        self,
        time_provider: Optional[Callable[[], float]] = None,
        window_seconds: int = RPS_WINDOW_SECONDS,
    ) -> None:
        self._now_provider = time_provider or time.time
        self._window_seconds = window_seconds
        self._lock = threading.Lock()
        self._last_reset = int(self._now_provider())
        self._count = 0

    @property
    def count(self) -> int:
        """Requests counted since the last reset."""
        with self._lock:
            return self._count

    @property
    def last_reset(self) -> int:
        """Unix timestamp (seconds) of the last reset."""
        with self._lock:
            return self._last_reset

    def record(self) -> Optional[float]:
        """Account for one request; return the rate when the window closes."""
        now = int(self._now_provider())
        with self._lock:
            elapsed = now - self._last_reset
            if elapsed >= self._window_seconds:
                rate = self._count / elapsed
                self._last_reset = now
                self._count = 0
                return rate
            self._count += 1
            return None
