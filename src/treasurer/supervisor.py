"""Supervised background threads for handlers and payment monitors."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """
    Runs units of work on daemon threads and keeps track of them.

    Failures are caught and logged at the task boundary so one bad
    handler or monitor never takes anything else down. ``stop_event``
    is shared with long-running tasks; setting it asks them to finish.
    """

    def __init__(self):
        self.stop_event = threading.Event()
        self._lock = threading.Lock()
        self._threads: set[threading.Thread] = set()
        self._ids = itertools.count(1)
        self._closed = False

    def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> threading.Thread:
        with self._lock:
            if self._closed:
                raise RuntimeError("Supervisor is shut down")
            thread = threading.Thread(
                target=self._run,
                name=f"{name}-{next(self._ids)}",
                args=(fn, args),
                daemon=True,
            )
            self._threads.add(thread)
        thread.start()
        return thread

    def _run(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Task %s failed", threading.current_thread().name)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    def active(self) -> int:
        with self._lock:
            return len(self._threads)

    def shutdown(self, timeout: float = 10.0) -> None:
        """Signal all tasks to stop and wait up to ``timeout`` seconds for them."""
        with self._lock:
            self._closed = True
            threads = list(self._threads)
        self.stop_event.set()
        deadline = time.monotonic() + timeout
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        still_running = [t.name for t in threads if t.is_alive()]
        if still_running:
            logger.warning("Tasks still running after shutdown: %s", ", ".join(still_running))
