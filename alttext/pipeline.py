"""Generate, review and, when quality is low, regenerate alt text once."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from alttext import logging_manager as log_mgr
from alttext.errors import AltTextError, DryRun, DuplicateAlt, MissingCredential
from alttext.generation import GenerationOrchestrator
from alttext.models import (
    GenerationMetadata,
    GenerationResult,
    QualityAssessment,
    utcnow,
)
from alttext.prompt_templates import feedback_lines
from alttext.quality import QualityReviewer
from alttext.stores import AssetStore, ConfigStore

logger = log_mgr.get_logger().getChild("pipeline")

MAX_RETRY = 1


@dataclass
class Attempt:
    result: GenerationResult
    assessment: QualityAssessment
    feedback: Tuple[str, ...] = ()


@dataclass
class GenerationOutcome:
    """Result of :meth:`AltTextPipeline.generate_and_review`."""

    asset_id: str
    alt_text: str
    assessment: QualityAssessment
    metadata: GenerationMetadata
    attempts: List[Attempt] = field(default_factory=list)

    @property
    def retried(self) -> bool:
        return len(self.attempts) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "alt_text": self.alt_text,
            "assessment": self.assessment.to_dict(),
            "metadata": self.metadata.to_dict(),
            "attempts": len(self.attempts),
            "retried": self.retried,
        }


def select_best(attempts: List[Attempt]) -> Attempt:
    """Highest score wins; the later attempt wins ties."""

    best = attempts[0]
    for attempt in attempts[1:]:
        if attempt.assessment.score >= best.assessment.score:
            best = attempt
    return best


class AltTextPipeline:
    def __init__(
        self,
        assets: AssetStore,
        config_store: ConfigStore,
        orchestrator: GenerationOrchestrator,
        reviewer: QualityReviewer,
        *,
        max_retry: int = MAX_RETRY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._assets = assets
        self._config_store = config_store
        self._orchestrator = orchestrator
        self._reviewer = reviewer
        self._max_retry = max(0, max_retry)
        self._clock = clock

    @property
    def assets(self) -> AssetStore:
        return self._assets

    def get_assessment(self, asset_id: str) -> Optional[QualityAssessment]:
        """Return the stored assessment if it still describes the current alt text."""

        asset = self._assets.get_asset(asset_id)
        stored = self._assets.get_assessment(asset_id)
        if stored is None:
            return None
        if not stored.is_current_for(asset.alt_text):
            logger.info(
                "Purging stale assessment for asset %s",
                asset_id,
                extra={"event": "quality.assessment_purged", "asset_id": asset_id},
            )
            self._assets.set_assessment(asset_id, None)
            return None
        return stored

    def generate_and_review(self, asset_id: str, source: str = "manual") -> GenerationOutcome:
        """Run generation and review, retrying once with reviewer feedback.

        :class:`~alttext.errors.DryRun` propagates before any review or write.
        """

        config = self._config_store.get_config()
        asset = self._assets.get_asset(asset_id)

        with log_mgr.log_context(asset_id=asset_id, stage="pipeline"):
            previous = self.get_assessment(asset_id)
            attempts: List[Attempt] = []
            feedback: Tuple[str, ...] = ()

            for retry_count in range(self._max_retry + 1):
                try:
                    result = self._orchestrator.generate(
                        asset, config, source, retry_count=retry_count, feedback=feedback
                    )
                except (MissingCredential, DryRun):
                    raise
                except DuplicateAlt:
                    if not attempts:
                        raise
                    logger.info(
                        "Retry produced no new text; keeping earlier attempt",
                        extra={"event": "pipeline.retry_duplicate"},
                    )
                    break
                except AltTextError as exc:
                    if not attempts:
                        raise
                    logger.warning(
                        "Retry failed (%s); keeping earlier attempt",
                        exc.message,
                        extra={"event": "pipeline.retry_failed"},
                    )
                    break

                assessment = self._reviewer.assess(
                    result.alt_text, asset, result.strategy, config, previous=previous
                )
                attempts.append(Attempt(result, assessment, feedback))

                if assessment.score >= config.review_threshold:
                    break
                if retry_count < self._max_retry:
                    logger.info(
                        "Score %s below threshold %s; retrying with feedback",
                        assessment.score,
                        config.review_threshold,
                        extra={"event": "pipeline.retry", "status": assessment.status.value},
                    )
                    feedback = tuple(
                        feedback_lines(assessment.summary, assessment.issues, result.alt_text)
                    )

            best = select_best(attempts)
            metadata = GenerationMetadata(
                source=source,
                model=best.result.model,
                strategy=best.result.strategy.kind,
                usage=best.result.usage,
                generated_at=self._clock(),
            )
            self._assets.set_alt_text(asset_id, best.result.alt_text)
            self._assets.set_generation_metadata(asset_id, metadata)
            self._assets.set_assessment(asset_id, best.assessment)
            logger.info(
                "Saved alt text for asset %s (score %s, attempts %s)",
                asset_id,
                best.assessment.score,
                len(attempts),
                extra={"event": "pipeline.saved", "status": best.assessment.status.value},
            )

        return GenerationOutcome(
            asset_id=asset_id,
            alt_text=best.result.alt_text,
            assessment=best.assessment,
            metadata=metadata,
            attempts=attempts,
        )


__all__ = ["AltTextPipeline", "Attempt", "GenerationOutcome", "MAX_RETRY", "select_best"]
