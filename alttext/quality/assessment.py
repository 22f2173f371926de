"""Combine heuristic and model scores into a single assessment."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, List, Optional

from alttext import logging_manager as log_mgr
from alttext.llm_client import LLMClient
from alttext.models import (
    GenerationConfig,
    ImageAsset,
    ImageStrategy,
    ModelReview,
    QualityAssessment,
    QualityStatus,
    content_hash,
    utcnow,
)

from .heuristics import HeuristicResult, score_alt_text
from .model_review import ModelReviewer

logger = log_mgr.get_logger().getChild("quality")


def dedupe_issues(items: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    issues: List[str] = []
    for item in items:
        text = (item or "").strip()
        key = text.casefold()
        if not text or key in seen:
            continue
        seen.add(key)
        issues.append(text)
    return issues


def _heuristic_summary(result: HeuristicResult) -> str:
    if result.issues:
        return result.issues[0]
    return "Alt text is specific and descriptive."


def combine(
    heuristic: HeuristicResult,
    review: Optional[ModelReview],
    *,
    digest: str,
    reviewed_at: datetime,
) -> QualityAssessment:
    """Merge scores conservatively: lowest score, worst status."""

    score = heuristic.score
    status = heuristic.status
    summary = _heuristic_summary(heuristic)
    issues: List[Optional[str]] = []

    if review is not None and review.ok:
        score = min(score, int(review.score))
        status = QualityStatus.worse(status, review.status)
        if review.summary:
            summary = review.summary
        issues.append(review.summary)
        issues.extend(review.issues)
    issues.extend(heuristic.issues)

    return QualityAssessment(
        score=score,
        status=status,
        grade=status.grade,
        issues=dedupe_issues(issues),
        summary=summary,
        heuristic_score=heuristic.score,
        review=review,
        content_hash=digest,
        reviewed_at=reviewed_at,
    )


def _asset_filename(asset: ImageAsset) -> str:
    if asset.filename:
        return asset.filename
    if asset.file_path:
        return asset.file_path.replace("\\", "/").rsplit("/", 1)[-1]
    return ""


class QualityReviewer:
    """Two-stage quality gate for generated alt text."""

    def __init__(
        self,
        model_reviewer: Optional[ModelReviewer] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._model_reviewer = model_reviewer or ModelReviewer()
        self._clock = clock

    def assess(
        self,
        text: str,
        asset: ImageAsset,
        strategy: Optional[ImageStrategy],
        config: GenerationConfig,
        previous: Optional[QualityAssessment] = None,
        *,
        client: Optional[LLMClient] = None,
    ) -> QualityAssessment:
        heuristic = score_alt_text(text, title=asset.title, filename=_asset_filename(asset))
        digest = content_hash(text)

        review: Optional[ModelReview] = None
        if config.review_enabled:
            if (
                previous is not None
                and previous.content_hash == digest
                and previous.review is not None
                and previous.review.ok
            ):
                review = previous.review
                logger.debug(
                    "Reusing model review for unchanged alt text",
                    extra={"event": "quality.review_reused", "asset_id": asset.asset_id},
                )
            else:
                review = self._model_reviewer.review(text, asset, strategy, config, client=client)

        assessment = combine(heuristic, review, digest=digest, reviewed_at=self._clock())
        logger.info(
            "Assessed asset %s: %s (%s)",
            asset.asset_id,
            assessment.score,
            assessment.status.value,
            extra={"event": "quality.assessed", "asset_id": asset.asset_id, "status": assessment.status.value},
        )
        return assessment


__all__ = ["QualityReviewer", "combine", "dedupe_issues"]
