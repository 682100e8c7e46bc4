"""
focussync/tasks.py
Best-effort background work (cache write-back, last_used stamps).

A spawned task never blocks the caller and its failure never reaches the
caller — it is logged at WARNING and dropped. Callers that want to wait
(tests, shutdown) can use the returned Future or join().
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Set

logger = logging.getLogger(__name__)


class BestEffortRunner:

    def __init__(self, max_workers: int = 2):
        self._pool = ThreadPoolExecutor(
            max_workers        = max_workers,
            thread_name_prefix = "focussync-task",
        )
        self._inflight: Set[Future] = set()
        self._lock = threading.Lock()

    def spawn(self, label: str, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Run fn(*args, **kwargs) in the background. Errors are logged, not raised."""

        def _guarded():
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                logger.warning(f"Background task '{label}' failed: {exc}")
                return None

        future = self._pool.submit(_guarded)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def join(self, timeout: float = 5.0) -> None:
        """Wait for everything spawned so far."""
        with self._lock:
            pending = list(self._inflight)
        wait(pending, timeout=timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        self.join(timeout)
        self._pool.shutdown(wait=False)
