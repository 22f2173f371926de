from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from alttext.errors import ApiError, DryRun, DuplicateAlt, MissingCredential
from alttext.jobs import (
    InMemoryStateStore,
    QUEUE_STATE_KEY,
    QueueManager,
    QueueWatchdog,
    retry_delay,
)
from alttext.models import QueueScope, QueueState
from alttext.stores import InMemoryAssetStore
from tests.helpers.fakes import ManualScheduler, RecordingNotifier, make_asset

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProcessor:
    """Write a canned alt text, or raise whatever ``failures`` maps the id to."""

    def __init__(self, assets: InMemoryAssetStore, failures=None) -> None:
        self.assets = assets
        self.failures = dict(failures or {})
        self.calls = []
        self.on_call = None

    def generate_and_review(self, asset_id, source="manual"):
        self.calls.append((asset_id, source))
        if self.on_call is not None:
            self.on_call(asset_id)
        failure = self.failures.get(asset_id)
        if failure is not None:
            raise failure
        self.assets.set_alt_text(asset_id, f"Generated description for image {asset_id}.")


def _assets(count, *, with_alt=()):
    return InMemoryAssetStore(
        make_asset(
            str(index),
            uploaded_at=T0 + timedelta(minutes=index),
            alt_text="Existing text" if str(index) in with_alt else "",
        )
        for index in range(1, count + 1)
    )


def _manager(assets, processor=None, *, clock=None):
    scheduler = ManualScheduler()
    notifier = RecordingNotifier()
    store = InMemoryStateStore()
    manager = QueueManager(
        processor or FakeProcessor(assets),
        assets,
        store,
        scheduler=scheduler,
        notifier=notifier,
        clock=clock or FakeClock(),
    )
    return manager, scheduler, notifier, store


def test_small_missing_queue_completes_in_one_tick():
    assets = _assets(3)
    processor = FakeProcessor(assets)
    manager, scheduler, notifier, _ = _manager(assets, processor)

    final = manager.start(QueueScope.MISSING, 5)

    assert final.active is False
    assert final.processed == 3
    assert final.errors == 0
    assert final.messages[-1] == "Queue completed."
    assert manager.state() is None
    assert notifier.subjects() == ["Alt text queue completed"]
    assert scheduler.scheduled == []
    assert {source for _, source in processor.calls} == {"queue"}
    assert assets.media_stats().missing == 0


def test_missing_scope_processes_newest_uploads_first():
    assets = _assets(4)
    processor = FakeProcessor(assets)
    manager, scheduler, _, _ = _manager(assets, processor)

    state = manager.start("missing", 2)

    assert [asset_id for asset_id, _ in processor.calls] == ["4", "3"]
    assert state.active
    assert scheduler.delays == [2.0]


def test_all_scope_resumes_from_persisted_cursor():
    assets = _assets(50)
    processor = FakeProcessor(assets)
    manager, scheduler, _, store = _manager(assets, processor)
    store.save(
        QUEUE_STATE_KEY,
        QueueState(scope=QueueScope.ALL, batch_size=5, cursor=40, processed=40, started_at=T0).to_dict(),
    )
    expected = assets.list_all_image_ids(5, 40)

    state = manager.tick()

    assert [asset_id for asset_id, _ in processor.calls] == expected
    assert state.cursor == 45
    assert state.processed == 45
    assert manager.state().cursor == 45
    assert scheduler.delays == [2.0]


def test_all_scope_completes_when_cursor_reaches_total():
    assets = _assets(6)
    manager, _, notifier, _ = _manager(assets)

    manager.start(QueueScope.ALL, 5)
    final = manager.tick()

    assert final.active is False
    assert final.cursor == 6
    assert notifier.subjects() == ["Alt text queue completed"]


def test_missing_credential_halts_queue():
    assets = _assets(3)
    processor = FakeProcessor(assets, {"3": MissingCredential()})
    manager, scheduler, notifier, _ = _manager(assets, processor)

    final = manager.start(QueueScope.MISSING, 5)

    assert final.active is False
    assert len(processor.calls) == 1
    assert "API key missing." in final.messages
    assert final.messages[-1].startswith("Queue halted:")
    assert manager.state() is None
    assert notifier.subjects() == ["Alt text queue halted"]
    assert scheduler.scheduled == []


def test_api_errors_back_off_then_halt():
    assets = _assets(2)
    processor = FakeProcessor(assets, {"2": ApiError("The server had an error", status=500)})
    manager, scheduler, notifier, _ = _manager(assets, processor)

    state = manager.start(QueueScope.MISSING, 5)
    assert state.active
    assert state.retry_count == 1
    assert "ID 2: The server had an error" in state.messages

    manager.tick()
    manager.tick()
    final = manager.tick()

    assert scheduler.delays == [5.0, 5.0, 10.0]
    assert final.active is False
    assert "after 3 retries" in final.messages[-1]
    assert notifier.subjects() == ["Alt text queue halted"]


def test_retry_delay_grows_with_consecutive_failures():
    assert [retry_delay(n) for n in range(4)] == [5.0, 5.0, 10.0, 15.0]


def test_success_resets_retry_counter():
    assets = _assets(3)
    processor = FakeProcessor(assets, {"3": ApiError("Bad gateway", status=502)})
    manager, _, _, _ = _manager(assets, processor)

    state = manager.start(QueueScope.MISSING, 5)
    assert state.retry_count == 1

    del processor.failures["3"]
    final = manager.tick()

    assert final.active is False
    assert final.processed == 3
    assert final.retry_count == 0


def test_batch_where_every_item_fails_halts():
    assets = _assets(2)
    processor = FakeProcessor(
        assets,
        {"1": DuplicateAlt("x", attempts=4), "2": DuplicateAlt("y", attempts=4)},
    )
    manager, _, notifier, _ = _manager(assets, processor)

    final = manager.start(QueueScope.MISSING, 5)

    assert final.active is False
    assert final.errors == 2
    assert final.messages[-1] == "Queue halted: Every item in the batch failed."
    assert notifier.subjects() == ["Alt text queue halted"]


def test_mixed_batch_records_errors_and_continues():
    assets = _assets(3)
    processor = FakeProcessor(assets, {"2": DuplicateAlt("x", attempts=4)})
    manager, scheduler, notifier, _ = _manager(assets, processor)

    state = manager.start(QueueScope.MISSING, 5)

    assert state.active
    assert state.processed == 2
    assert state.errors == 1
    assert "ID 2: Generated alt text matches the existing alt text." in state.messages
    assert scheduler.delays == [2.0]
    assert notifier.messages == []


def test_unexpected_exceptions_count_as_item_errors():
    assets = _assets(2)
    processor = FakeProcessor(assets, {"2": ValueError("boom")})
    manager, _, _, _ = _manager(assets, processor)

    state = manager.start(QueueScope.MISSING, 5)

    assert state.errors == 1
    assert "ID 2: boom" in state.messages


def test_dry_run_counts_as_success_and_completes_missing_scope():
    assets = _assets(3)
    processor = FakeProcessor(assets, {str(i): DryRun("prompt") for i in range(1, 4)})
    manager, _, notifier, _ = _manager(assets, processor)

    final = manager.start(QueueScope.MISSING, 5)

    assert final.active is False
    assert final.processed == 3
    assert final.errors == 0
    assert notifier.subjects() == ["Alt text queue completed"]
    assert assets.media_stats().missing == 3


def test_cancel_during_tick_stops_after_current_item():
    assets = _assets(3)
    processor = FakeProcessor(assets)
    manager, scheduler, notifier, _ = _manager(assets, processor)
    processor.on_call = lambda asset_id: manager.cancel()

    result = manager.start(QueueScope.MISSING, 5)

    assert result is None
    assert len(processor.calls) == 1
    assert manager.state() is None
    assert notifier.subjects() == ["Alt text queue cancelled"]
    assert scheduler.scheduled == []


def test_cancel_without_queue_returns_false():
    manager, _, notifier, _ = _manager(_assets(1))

    assert manager.cancel() is False
    assert notifier.messages == []


def test_tick_is_not_reentrant():
    assets = _assets(2)
    processor = FakeProcessor(assets)
    manager, _, _, _ = _manager(assets, processor)
    nested = []

    def reenter(asset_id):
        nested.append((manager.is_ticking, manager.tick()))

    processor.on_call = reenter
    manager.start(QueueScope.MISSING, 5)

    assert len(processor.calls) == 2
    assert all(ticking for ticking, _ in nested)
    assert all(state is not None and state.active for _, state in nested)


def _blocking_old_queue(assets, *, start_wait=5.0):
    """Start a tick for an older queue on a worker thread and park it on its first item."""

    processor = FakeProcessor(assets)
    clock = FakeClock()
    scheduler = ManualScheduler()
    store = InMemoryStateStore()
    manager = QueueManager(
        processor,
        assets,
        store,
        scheduler=scheduler,
        notifier=RecordingNotifier(),
        clock=clock,
        start_wait=start_wait,
    )
    store.save(
        QUEUE_STATE_KEY,
        QueueState(scope=QueueScope.ALL, batch_size=1, started_at=T0).to_dict(),
    )
    entered = threading.Event()
    release = threading.Event()

    def park(asset_id):
        if not entered.is_set():
            entered.set()
            release.wait(5)

    processor.on_call = park
    worker = threading.Thread(target=manager.tick)
    worker.start()
    assert entered.wait(5)
    clock.advance(60)
    return manager, processor, scheduler, release, worker


def test_start_waits_for_replaced_queue_tick():
    assets = _assets(3)
    manager, processor, scheduler, release, worker = _blocking_old_queue(assets)
    timer = threading.Timer(0.05, release.set)
    timer.start()

    final = manager.start(QueueScope.MISSING, 5)
    worker.join(5)
    timer.join(5)

    assert len(processor.calls) == 3
    assert final.active is False
    assert final.scope is QueueScope.MISSING
    assert final.processed == 2
    assert manager.state() is None
    assert scheduler.scheduled == []
    assert assets.media_stats().missing == 0


def test_start_schedules_tick_when_old_tick_outlasts_wait():
    assets = _assets(3)
    manager, processor, scheduler, release, worker = _blocking_old_queue(assets, start_wait=0.01)

    try:
        state = manager.start(QueueScope.MISSING, 5)
    finally:
        release.set()
        worker.join(5)

    assert len(processor.calls) == 1
    assert state.active
    assert state.processed == 0
    assert scheduler.delays == [2.0]


def test_tick_without_queue_is_a_no_op():
    assets = _assets(1)
    processor = FakeProcessor(assets)
    manager, _, _, _ = _manager(assets, processor)

    assert manager.tick() is None
    assert processor.calls == []


def test_start_replaces_active_queue():
    assets = _assets(3)
    processor = FakeProcessor(assets)
    manager, scheduler, _, store = _manager(assets, processor)
    store.save(
        QUEUE_STATE_KEY,
        QueueState(scope=QueueScope.ALL, batch_size=5, cursor=10, processed=10, started_at=T0).to_dict(),
    )

    state = manager.start(QueueScope.MISSING, 1)

    assert state.scope is QueueScope.MISSING
    assert state.cursor == 0
    assert state.processed == 1
    assert scheduler.cancelled >= 1


@pytest.mark.parametrize("requested, expected", [(50, 20), (0, 5), ("abc", 5), (7, 7)])
def test_batch_size_is_clamped(requested, expected):
    assets = _assets(30)
    manager, _, _, _ = _manager(assets)

    state = manager.start(QueueScope.MISSING, requested)

    assert state.batch_size == expected
    assert state.processed == expected


def test_messages_keep_only_latest_five():
    assets = _assets(8)
    processor = FakeProcessor(
        assets, {str(i): DuplicateAlt(str(i), attempts=4) for i in range(2, 9)}
    )
    manager, _, _, _ = _manager(assets, processor)

    state = manager.start(QueueScope.MISSING, 8)

    assert state.errors == 7
    assert len(state.messages) == 5
    assert state.messages[-1] == "ID 2: Generated alt text matches the existing alt text."


def test_watchdog_kicks_stalled_queue():
    clock = FakeClock()
    assets = _assets(4)
    processor = FakeProcessor(assets)
    manager, _, _, _ = _manager(assets, processor, clock=clock)
    manager.start(QueueScope.MISSING, 2)
    watchdog = QueueWatchdog(manager, stall_seconds=90, clock=clock)

    clock.advance(30)
    assert watchdog.check() is False
    assert len(processor.calls) == 2

    clock.advance(70)
    assert watchdog.check() is True
    assert len(processor.calls) == 4


def test_watchdog_ignores_idle_system():
    manager, _, _, _ = _manager(_assets(1))

    assert QueueWatchdog(manager, clock=FakeClock()).check() is False
