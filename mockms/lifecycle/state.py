"""Server lifecycle: draining flag, worker tracking and signal wiring."""

import logging
import signal
import threading
import time
from typing import Optional

from mockms.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.lifecycle"), {})


class ServerLifecycle:
    """Tracks whether the server is draining and which workers are still busy."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._workers: set[threading.Thread] = set()

    def should_stop(self) -> bool:
        """True once shutdown was requested."""
        return self._stop_event.is_set()

    # The mock has no separate "stop accepting" phase; draining and stopping
    # begin together.
    is_draining = should_stop

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        """Block until shutdown is requested or ``timeout`` elapses."""
        return self._stop_event.wait(timeout)

    def begin_draining(self) -> None:
        """Signal the server to begin graceful shutdown."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "shutdown_started"}
        )

    def register_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.discard(thread)

    def has_worker(self, thread: threading.Thread) -> bool:
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def wait_for_workers(self, timeout: float) -> bool:
        """Join tracked workers; return False if some outlive ``timeout``."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                pending = list(self._workers)
            if not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={"event": "shutdown_timeout", "remaining_workers": len(pending)},
                )
                return False
            for worker in pending:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break


def install_signal_handlers(lifecycle: ServerLifecycle) -> None:
    """Begin draining on SIGINT or SIGTERM."""

    def shutdown_handler(signum: int, _frame) -> None:
        LIFECYCLE_LOGGER.info(
            "Received shutdown signal", extra={"event": "signal_received", "signal": signum}
        )
        lifecycle.begin_draining()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)
