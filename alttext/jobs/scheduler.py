"""Timer-based scheduling for queue ticks."""

from __future__ import annotations

import threading
from typing import Callable, Optional, Protocol

from .. import logging_manager

_LOGGER = logging_manager.get_logger().getChild("jobs.scheduler")


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: Callable[[], object]) -> None:
        ...

    def cancel(self) -> None:
        ...


class ThreadingScheduler:
    """Keep at most one pending :class:`threading.Timer`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None and self._timer.is_alive()

    def schedule(self, delay: float, callback: Callable[[], object]) -> None:
        timer = threading.Timer(max(0.0, float(delay)), callback)
        timer.daemon = True
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
        timer.start()
        _LOGGER.debug("Next queue tick in %.1fs", delay, extra={"event": "queue.scheduled"})

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


__all__ = ["Scheduler", "ThreadingScheduler"]
