"""Background queue that fills in alt text batch by batch.

State machine::

    Idle --start--> Running --batch done, target met--> Completed --> Idle
    Running --fatal--> Halted --> Idle
    Running --retryable API error--> Running (after a delay, bounded)

Only one queue exists at a time. Its :class:`QueueState` is persisted through a
:class:`StateStore` after every item so a restarted process resumes from the
stored cursor and counters.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Union

from .. import logging_manager
from ..config_manager import DEFAULT_BATCH_SIZE, clamp_batch_size
from ..errors import AltTextError, ApiError, DryRun, MissingCredential
from ..models import QueueScope, QueueState, utcnow
from ..notifications import NotificationSink, notify_safely
from .persistence import StateStore
from .scheduler import Scheduler, ThreadingScheduler

_LOGGER = logging_manager.get_logger().getChild("jobs.queue")

QUEUE_STATE_KEY = "queue"
QUEUE_SOURCE = "queue"
MAX_CONSECUTIVE_RETRIES = 3
RETRY_DELAY_STEP = 5.0
DEFAULT_TICK_DELAY = 2.0
DEFAULT_STALL_SECONDS = 90.0
DEFAULT_START_WAIT = 30.0


class ItemProcessor(Protocol):
    def generate_and_review(self, asset_id: str, source: str = ...) -> Any:
        ...


class QueueAssets(Protocol):
    def list_missing_alt_ids(self, limit: int) -> List[str]:
        ...

    def list_all_image_ids(self, limit: int, offset: int = 0) -> List[str]:
        ...

    def count_images(self) -> int:
        ...


def retry_delay(retry_count: int) -> float:
    return max(RETRY_DELAY_STEP, RETRY_DELAY_STEP * retry_count)


class QueueManager:
    """Drive one queue tick at a time over the asset store."""

    def __init__(
        self,
        processor: ItemProcessor,
        assets: QueueAssets,
        state_store: StateStore,
        *,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[NotificationSink] = None,
        tick_delay: float = DEFAULT_TICK_DELAY,
        start_wait: float = DEFAULT_START_WAIT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._processor = processor
        self._assets = assets
        self._store = state_store
        self._scheduler = scheduler or ThreadingScheduler()
        self._notifier = notifier
        self._tick_delay = tick_delay
        self._start_wait = start_wait
        self._clock = clock
        self._tick_lock = threading.Lock()

    def _load(self) -> Optional[QueueState]:
        payload = self._store.load(QUEUE_STATE_KEY)
        return QueueState.from_dict(payload) if payload else None

    def _save(self, state: QueueState) -> None:
        self._store.save(QUEUE_STATE_KEY, state.to_dict())

    def state(self) -> Optional[QueueState]:
        return self._load()

    @property
    def is_ticking(self) -> bool:
        return self._tick_lock.locked()

    def start(
        self,
        scope: Union[QueueScope, str] = QueueScope.MISSING,
        batch_size: Any = DEFAULT_BATCH_SIZE,
    ) -> Optional[QueueState]:
        """Replace any active queue, run one tick now and schedule the next.

        A tick still running for the replaced queue stops after its current item;
        the first tick waits up to ``start_wait`` seconds for it to let go.
        """

        scope = QueueScope(scope)
        batch = clamp_batch_size(batch_size)
        self._scheduler.cancel()
        previous = self._load()
        if previous is not None and previous.active:
            _LOGGER.info(
                "Replacing active %s queue",
                previous.scope.value,
                extra={"event": "queue.replaced", "scope": previous.scope.value},
            )
        state = QueueState(scope=scope, batch_size=batch, started_at=self._clock())
        state.push_message(f"Queue started ({scope.value}, batch {batch}).")
        self._save(state)
        _LOGGER.info(
            "Queue started",
            extra={"event": "queue.started", "scope": scope.value, "batch_size": batch},
        )
        return self._run_tick(wait=self._start_wait)

    def cancel(self) -> bool:
        """Clear the queue. A tick in progress stops after its current item."""

        state = self._load()
        self._store.delete(QUEUE_STATE_KEY)
        self._scheduler.cancel()
        if state is None:
            return False
        _LOGGER.info("Queue cancelled", extra={"event": "queue.cancelled", "scope": state.scope.value})
        notify_safely(
            self._notifier,
            "Alt text queue cancelled",
            f"Cancelled after {state.processed} processed and {state.errors} errors.",
        )
        return True

    def tick(self) -> Optional[QueueState]:
        """Process one batch. Returns the state after the tick, or ``None`` when idle."""

        return self._run_tick()

    def _run_tick(self, *, wait: float = 0.0) -> Optional[QueueState]:
        acquired = self._tick_lock.acquire(timeout=wait) if wait > 0 else self._tick_lock.acquire(blocking=False)
        if not acquired:
            _LOGGER.debug("Tick already running; skipping", extra={"event": "queue.tick_skipped"})
            if wait > 0:
                self._scheduler.schedule(self._tick_delay, self.tick)
            return self._load()
        try:
            with logging_manager.log_context(stage="queue"):
                return self._tick()
        finally:
            self._tick_lock.release()

    def _candidates(self, state: QueueState) -> List[str]:
        if state.scope is QueueScope.ALL:
            return list(self._assets.list_all_image_ids(state.batch_size, state.cursor))
        return list(self._assets.list_missing_alt_ids(state.batch_size))

    def _is_complete(self, state: QueueState) -> bool:
        if state.scope is QueueScope.ALL:
            return state.cursor >= self._assets.count_images()
        return not self._assets.list_missing_alt_ids(1)

    def _still_current(self, state: QueueState) -> bool:
        current = self._load()
        return current is not None and current.active and current.started_at == state.started_at

    def _tick(self) -> Optional[QueueState]:
        state = self._load()
        if state is None or not state.active:
            return None

        state.last_run_at = self._clock()
        self._save(state)

        ids = self._candidates(state)
        if not ids:
            return self._complete(state)

        successes = 0
        writes = 0
        batch_errors = 0
        handled = 0

        for asset_id in ids:
            state.attempted += 1
            try:
                with logging_manager.log_context(asset_id=asset_id):
                    self._processor.generate_and_review(asset_id, QUEUE_SOURCE)
            except DryRun:
                successes += 1
                state.processed += 1
                state.retry_count = 0
            except MissingCredential as exc:
                state.push_message(exc.message)
                return self._halt(state, exc.message)
            except ApiError as exc:
                if not self._still_current(state):
                    return None
                state.push_message(f"ID {asset_id}: {exc.message}")
                if state.scope is QueueScope.ALL:
                    state.cursor += handled
                return self._retry_or_halt(state, exc)
            except AltTextError as exc:
                batch_errors += 1
                state.errors += 1
                state.push_message(f"ID {asset_id}: {exc.message}")
                _LOGGER.warning(
                    "Item %s failed: %s",
                    asset_id,
                    exc.message,
                    extra={"event": "queue.item_failed", "asset_id": asset_id, "status": exc.kind.value},
                )
            except Exception as exc:
                batch_errors += 1
                state.errors += 1
                state.push_message(f"ID {asset_id}: {exc}")
                _LOGGER.exception(
                    "Unexpected failure for item %s",
                    asset_id,
                    extra={"event": "queue.item_crashed", "asset_id": asset_id},
                )
            else:
                successes += 1
                writes += 1
                state.processed += 1
                state.retry_count = 0
            handled += 1
            if not self._still_current(state):
                _LOGGER.info("Queue cleared during tick; stopping", extra={"event": "queue.interrupted"})
                return None
            self._save(state)

        if state.scope is QueueScope.ALL:
            state.cursor += len(ids)

        if successes == 0 and batch_errors == len(ids):
            return self._halt(state, "Every item in the batch failed.")
        if state.scope is QueueScope.MISSING and writes == 0 and batch_errors == 0:
            # Dry runs write nothing, so the missing set would never shrink.
            return self._complete(state)
        if self._is_complete(state):
            return self._complete(state)

        self._save(state)
        self._scheduler.schedule(self._tick_delay, self.tick)
        return state

    def _retry_or_halt(self, state: QueueState, exc: ApiError) -> Optional[QueueState]:
        if state.retry_count >= MAX_CONSECUTIVE_RETRIES:
            return self._halt(state, f"API error after {state.retry_count} retries: {exc.message}")
        delay = retry_delay(state.retry_count)
        state.retry_count += 1
        self._save(state)
        _LOGGER.warning(
            "API error; retrying batch in %.0fs (%s/%s)",
            delay,
            state.retry_count,
            MAX_CONSECUTIVE_RETRIES,
            extra={"event": "queue.retry_scheduled", "status": exc.kind.value},
        )
        self._scheduler.schedule(delay, self.tick)
        return state

    def _finish(self, state: QueueState, message: str) -> QueueState:
        state.active = False
        state.push_message(message)
        self._store.delete(QUEUE_STATE_KEY)
        self._scheduler.cancel()
        return state

    def _complete(self, state: QueueState) -> QueueState:
        final = self._finish(state, "Queue completed.")
        _LOGGER.info(
            "Queue completed",
            extra={"event": "queue.completed", "scope": state.scope.value, "status": "completed"},
        )
        notify_safely(
            self._notifier,
            "Alt text queue completed",
            f"Processed {state.processed} images with {state.errors} errors ({state.scope.value} scope).",
        )
        return final

    def _halt(self, state: QueueState, reason: str) -> QueueState:
        final = self._finish(state, f"Queue halted: {reason}")
        _LOGGER.error(
            "Queue halted: %s",
            reason,
            extra={"event": "queue.halted", "scope": state.scope.value, "status": "halted"},
        )
        notify_safely(
            self._notifier,
            "Alt text queue halted",
            f"{reason}\nProcessed {state.processed} images with {state.errors} errors before halting.",
        )
        return final


class QueueWatchdog:
    """Force a tick when the queue is active but the scheduler went quiet."""

    def __init__(
        self,
        manager: QueueManager,
        *,
        stall_seconds: float = DEFAULT_STALL_SECONDS,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._manager = manager
        self._stall_seconds = stall_seconds
        self._interval = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> bool:
        """Return True when a stalled queue was kicked."""

        state = self._manager.state()
        if state is None or not state.active or self._manager.is_ticking:
            return False
        reference = state.last_run_at or state.started_at
        if reference is not None:
            idle = (self._clock() - reference).total_seconds()
            if idle < self._stall_seconds:
                return False
        _LOGGER.warning(
            "Queue stalled; forcing a tick",
            extra={"event": "queue.watchdog", "scope": state.scope.value},
        )
        self._manager.tick()
        return True

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.check()
            except Exception:
                _LOGGER.exception("Watchdog check failed", extra={"event": "queue.watchdog_failed"})

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="alttext-watchdog", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 1)
            self._thread = None


__all__ = [
    "MAX_CONSECUTIVE_RETRIES",
    "QUEUE_STATE_KEY",
    "QueueManager",
    "QueueWatchdog",
    "retry_delay",
]
