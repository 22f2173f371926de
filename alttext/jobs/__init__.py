"""Background job helpers: state persistence, scheduling and the queue."""

from .persistence import InMemoryStateStore, JsonStateStore, StateStore
from .queue import MAX_CONSECUTIVE_RETRIES, QUEUE_STATE_KEY, QueueManager, QueueWatchdog, retry_delay
from .scheduler import Scheduler, ThreadingScheduler

__all__ = [
    "InMemoryStateStore",
    "JsonStateStore",
    "MAX_CONSECUTIVE_RETRIES",
    "QUEUE_STATE_KEY",
    "QueueManager",
    "QueueWatchdog",
    "Scheduler",
    "StateStore",
    "ThreadingScheduler",
    "retry_delay",
]
