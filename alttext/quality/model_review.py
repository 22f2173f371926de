"""Ask the generation API to critique a candidate alt text."""

from __future__ import annotations

import json
import math
from typing import Any, Callable, Dict, List, Optional

import regex

from alttext import logging_manager as log_mgr
from alttext.errors import AltTextError, ReviewFailed
from alttext.llm_client import LLMClient, build_chat_payload, create_client
from alttext.models import (
    GenerationConfig,
    ImageAsset,
    ImageStrategy,
    ModelReview,
    QualityStatus,
)
from alttext.prompt_templates import REVIEW_SYSTEM_PROMPT, build_review_prompt

logger = log_mgr.get_logger().getChild("quality.model_review")

REVIEW_TEMPERATURE = 0.0
REVIEW_MAX_TOKENS = 300

_FENCE_PATTERN = regex.compile(r"```(?:json|JSON)?\s*(.*?)```", regex.DOTALL)

_VERDICTS = {
    "excellent": QualityStatus.GREAT,
    "great": QualityStatus.GREAT,
    "outstanding": QualityStatus.GREAT,
    "good": QualityStatus.GOOD,
    "strong": QualityStatus.GOOD,
    "acceptable": QualityStatus.GOOD,
    "pass": QualityStatus.GOOD,
    "passed": QualityStatus.GOOD,
    "review": QualityStatus.REVIEW,
    "needs review": QualityStatus.REVIEW,
    "needs improvement": QualityStatus.REVIEW,
    "fair": QualityStatus.REVIEW,
    "weak": QualityStatus.REVIEW,
    "revise": QualityStatus.REVIEW,
    "critical": QualityStatus.CRITICAL,
    "poor": QualityStatus.CRITICAL,
    "bad": QualityStatus.CRITICAL,
    "fail": QualityStatus.CRITICAL,
    "failed": QualityStatus.CRITICAL,
    "unacceptable": QualityStatus.CRITICAL,
}


def verdict_status(verdict: Optional[str]) -> Optional[QualityStatus]:
    key = regex.sub(r"[\s_-]+", " ", str(verdict or "")).strip().casefold()
    return _VERDICTS.get(key)


def _first_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``text``, honouring strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_review_payload(text: Optional[str]) -> Dict[str, Any]:
    """Extract the reviewer's JSON object from a free-form response."""

    raw = (text or "").strip()
    if not raw:
        raise ReviewFailed("Review response was empty.")
    fenced = _FENCE_PATTERN.search(raw)
    if fenced:
        raw = fenced.group(1).strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        block = _first_json_object(raw)
        if block is None:
            raise ReviewFailed("Review response did not contain JSON.", data={"preview": raw[:200]})
        try:
            data = json.loads(block)
        except json.JSONDecodeError as exc:
            raise ReviewFailed(f"Review JSON could not be parsed: {exc}", data={"preview": raw[:200]}) from exc
    if not isinstance(data, dict):
        raise ReviewFailed("Review JSON was not an object.")
    return data


def _coerce_issues(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    issues: List[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if text:
            issues.append(text)
    return issues


def review_from_payload(data: Dict[str, Any], *, model: str) -> ModelReview:
    """Build a :class:`ModelReview` from parsed reviewer JSON."""

    raw_score = data.get("score")
    try:
        value = float(raw_score)
    except (TypeError, ValueError) as exc:
        raise ReviewFailed("Review JSON has no numeric score.", data={"score": raw_score}) from exc
    if not math.isfinite(value):
        raise ReviewFailed("Review JSON has no numeric score.", data={"score": raw_score})
    score = max(0, min(100, int(round(value))))
    verdict = str(data.get("verdict") or "").strip()
    status = verdict_status(verdict) or QualityStatus.from_score(score)
    return ModelReview(
        score=score,
        status=status,
        verdict=verdict,
        summary=str(data.get("summary") or "").strip(),
        issues=_coerce_issues(data.get("issues")),
        model=model,
    )


def _build_review(text: Optional[str], *, model: str) -> ModelReview:
    try:
        return review_from_payload(parse_review_payload(text), model=model)
    except (TypeError, ValueError, OverflowError, RecursionError) as exc:
        raise ReviewFailed(f"Review JSON could not be used: {exc}") from exc


class ModelReviewer:
    """Grade alt text with the language model; failures degrade to an error record."""

    def __init__(
        self,
        client_factory: Optional[Callable[[GenerationConfig], LLMClient]] = None,
        *,
        max_rate_limit_retries: int = 3,
    ) -> None:
        self._max_rate_limit_retries = max_rate_limit_retries
        self._client_factory = client_factory or self._default_client

    def _default_client(self, config: GenerationConfig) -> LLMClient:
        return create_client(config, max_retries=self._max_rate_limit_retries)

    def review(
        self,
        alt_text: str,
        asset: ImageAsset,
        strategy: Optional[ImageStrategy],
        config: GenerationConfig,
        *,
        client: Optional[LLMClient] = None,
    ) -> ModelReview:
        model = config.review_model or config.model
        image_part = strategy.content_part() if strategy is not None else None
        payload = build_chat_payload(
            model=model,
            system_prompt=REVIEW_SYSTEM_PROMPT,
            user_text=build_review_prompt(alt_text, asset, include_image=image_part is not None),
            image_part=image_part,
            temperature=REVIEW_TEMPERATURE,
            max_tokens=REVIEW_MAX_TOKENS,
        )
        usage = None
        try:
            if client is not None:
                response = client.send_chat_request(payload, timeout=config.request_timeout)
            else:
                with self._client_factory(config) as owned:
                    response = owned.send_chat_request(payload, timeout=config.request_timeout)
            usage = response.token_usage
            review = _build_review(response.text, model=model)
        except AltTextError as exc:
            logger.warning(
                "Model review unavailable for asset %s: %s",
                asset.asset_id,
                exc.message,
                extra={"event": "quality.review_failed", "asset_id": asset.asset_id},
            )
            failed = ModelReview(model=model, error=exc.message)
            if usage is not None:
                failed.usage = usage
            return failed

        review.usage = response.token_usage
        return review


__all__ = [
    "ModelReviewer",
    "parse_review_payload",
    "review_from_payload",
    "verdict_status",
]
