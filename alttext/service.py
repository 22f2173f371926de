"""Entry points used by dashboards, CLIs and HTTP handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from alttext import logging_manager as log_mgr
from alttext.config_manager import AltTextSettings, get_settings
from alttext.errors import AltTextError, DryRun, MissingCredential
from alttext.generation import ClientFactory, GenerationOrchestrator
from alttext.images import ImagePayloadResolver
from alttext.jobs import JsonStateStore, QueueManager, QueueWatchdog, Scheduler, StateStore
from alttext.models import MediaStats, QualityAssessment, QueueScope, QueueState, UsageLedger, utcnow
from alttext.notifications import NotificationSink, build_notifier
from alttext.pipeline import AltTextPipeline, GenerationOutcome
from alttext.quality import ModelReviewer, QualityReviewer
from alttext.stores import AssetStore, ConfigStore, SettingsConfigStore
from alttext.usage import UsageTracker

logger = log_mgr.get_logger().getChild("service")


@dataclass
class BulkSummary:
    processed: int = 0
    errors: int = 0
    messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"processed": self.processed, "errors": self.errors, "messages": list(self.messages)}


class AltTextService:
    """Wire the pipeline, usage ledger and queue around injected stores."""

    def __init__(
        self,
        assets: AssetStore,
        config_store: ConfigStore,
        state_store: StateStore,
        *,
        settings: Optional[AltTextSettings] = None,
        notifier: Optional[NotificationSink] = None,
        client_factory: Optional[ClientFactory] = None,
        resolver: Optional[ImagePayloadResolver] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or AltTextSettings()
        self.assets = assets
        self.config_store = config_store
        self.usage = UsageTracker(state_store, notifier, clock=clock)
        self.usage.set_threshold(self.settings.token_alert_threshold)
        retries = self.settings.max_rate_limit_retries
        self.orchestrator = GenerationOrchestrator(
            client_factory, resolver, self.usage, max_rate_limit_retries=retries
        )
        self.reviewer = QualityReviewer(
            ModelReviewer(client_factory, max_rate_limit_retries=retries), clock=clock
        )
        self.pipeline = AltTextPipeline(
            assets, config_store, self.orchestrator, self.reviewer, clock=clock
        )
        self.queue = QueueManager(
            self.pipeline,
            assets,
            state_store,
            scheduler=scheduler,
            notifier=notifier,
            tick_delay=self.settings.queue_tick_delay_seconds,
            clock=clock,
        )
        self.watchdog = QueueWatchdog(
            self.queue,
            stall_seconds=self.settings.watchdog_stall_seconds,
            interval_seconds=self.settings.watchdog_interval_seconds,
            clock=clock,
        )

    def generate_and_review(self, asset_id: str, source: str = "manual") -> GenerationOutcome:
        return self.pipeline.generate_and_review(asset_id, source)

    def get_assessment(self, asset_id: str) -> Optional[QualityAssessment]:
        return self.pipeline.get_assessment(asset_id)

    def start_queue(
        self,
        scope: Union[QueueScope, str] = QueueScope.MISSING,
        batch_size: Any = None,
    ) -> Optional[QueueState]:
        size = self.settings.queue_batch_size if batch_size is None else batch_size
        return self.queue.start(scope, size)

    def cancel_queue(self) -> bool:
        return self.queue.cancel()

    def run_queue_tick_now(self) -> Optional[QueueState]:
        return self.queue.tick()

    def get_queue_state(self) -> Optional[QueueState]:
        return self.queue.state()

    def get_usage_ledger(self) -> UsageLedger:
        return self.usage.snapshot()

    def set_usage_alert_threshold(self, value: int) -> UsageLedger:
        return self.usage.set_threshold(value)

    def media_stats(self) -> MediaStats:
        return self.assets.media_stats()

    def maybe_generate_on_upload(self, asset_id: str) -> Optional[GenerationOutcome]:
        """Generate alt text for a fresh upload when the settings allow it.

        Failures are logged, never raised: an upload must not fail because the
        description could not be produced.
        """

        if not self.settings.enable_on_upload:
            return None
        try:
            asset = self.assets.get_asset(asset_id)
        except AltTextError as exc:
            logger.warning("Upload hook skipped: %s", exc.message, extra={"event": "upload.skipped"})
            return None
        if not asset.is_image:
            return None
        if asset.alt_text.strip() and not self.settings.force_overwrite:
            return None
        try:
            return self.pipeline.generate_and_review(asset_id, "upload")
        except AltTextError as exc:
            level = logger.info if not exc.is_failure else logger.warning
            level(
                "Upload generation for %s did not complete: %s",
                asset_id,
                exc.message,
                extra={"event": "upload.generation", "asset_id": asset_id, "status": exc.kind.value},
            )
            return None

    def generate_bulk(self, asset_ids: Iterable[str], source: str = "bulk") -> BulkSummary:
        summary = BulkSummary()
        for asset_id in asset_ids:
            try:
                self.pipeline.generate_and_review(asset_id, source)
            except DryRun as exc:
                summary.processed += 1
                summary.messages.append(f"ID {asset_id}: {exc.message}")
            except MissingCredential as exc:
                summary.errors += 1
                summary.messages.append(f"ID {asset_id}: {exc.message}")
                break
            except AltTextError as exc:
                summary.errors += 1
                summary.messages.append(f"ID {asset_id}: {exc.message}")
            else:
                summary.processed += 1
        logger.info(
            "Bulk generation finished: %s processed, %s errors",
            summary.processed,
            summary.errors,
            extra={"event": "bulk.finished"},
        )
        return summary


def build_service(
    assets: AssetStore,
    settings: Optional[AltTextSettings] = None,
    *,
    state_store: Optional[StateStore] = None,
    notifier: Optional[NotificationSink] = None,
    **kwargs: Any,
) -> AltTextService:
    """Build a service from the active configuration."""

    active = settings or get_settings()
    return AltTextService(
        assets,
        SettingsConfigStore(active),
        state_store or JsonStateStore(active.storage_dir),
        settings=active,
        notifier=notifier or build_notifier(active.notify_webhook_url),
        **kwargs,
    )


__all__ = ["AltTextService", "BulkSummary", "build_service"]
