"""Cumulative token accounting with a one-shot threshold alert."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from alttext import logging_manager as log_mgr
from alttext.jobs.persistence import StateStore
from alttext.models import TokenUsage, UsageLedger, utcnow
from alttext.notifications import NotificationSink, notify_safely

logger = log_mgr.get_logger().getChild("usage")

USAGE_STATE_KEY = "usage"


class UsageTracker:
    """Read-modify-write wrapper around the persisted :class:`UsageLedger`."""

    def __init__(
        self,
        state_store: StateStore,
        notifier: Optional[NotificationSink] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = state_store
        self._notifier = notifier
        self._clock = clock
        self._lock = threading.Lock()

    def _load(self) -> UsageLedger:
        payload = self._store.load(USAGE_STATE_KEY)
        return UsageLedger.from_dict(payload) if payload else UsageLedger()

    def _save(self, ledger: UsageLedger) -> None:
        self._store.save(USAGE_STATE_KEY, ledger.to_dict())

    def snapshot(self) -> UsageLedger:
        with self._lock:
            return self._load()

    def record(self, usage: TokenUsage) -> UsageLedger:
        """Add ``usage`` to the ledger and fire the threshold alert if crossed."""

        with self._lock:
            ledger = self._load()
            if usage.is_empty:
                return ledger
            ledger.prompt_tokens += usage.prompt
            ledger.completion_tokens += usage.completion
            ledger.total_tokens += usage.total
            ledger.requests += 1
            ledger.last_request_at = self._clock()

            fire_alert = (
                ledger.alert_threshold > 0
                and not ledger.alert_sent
                and ledger.total_tokens >= ledger.alert_threshold
            )
            if fire_alert:
                ledger.alert_sent = True
            self._save(ledger)

        if fire_alert:
            logger.warning(
                "Token usage %s reached alert threshold %s",
                ledger.total_tokens,
                ledger.alert_threshold,
                extra={"event": "usage.alert"},
            )
            notify_safely(
                self._notifier,
                "Alt text token usage alert",
                (
                    f"Cumulative token usage reached {ledger.total_tokens} tokens "
                    f"across {ledger.requests} requests (threshold {ledger.alert_threshold})."
                ),
            )
        return ledger

    def set_threshold(self, value: int) -> UsageLedger:
        value = max(0, int(value or 0))
        with self._lock:
            ledger = self._load()
            if ledger.alert_threshold != value:
                ledger.alert_threshold = value
                ledger.alert_sent = False
                self._save(ledger)
            return ledger

    def reset(self) -> UsageLedger:
        """Clear the counters, keeping the configured threshold."""

        with self._lock:
            ledger = UsageLedger(alert_threshold=self._load().alert_threshold)
            self._save(ledger)
            return ledger


__all__ = ["USAGE_STATE_KEY", "UsageTracker"]
