"""Data model shared by the generation pipeline and the background queue."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import regex

MAX_QUEUE_MESSAGES = 5
DEFAULT_MAX_INLINE_BYTES = 2 * 1024 * 1024


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def _dumps(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


_WHITESPACE = regex.compile(r"\s+")


def normalize_alt_text(text: Optional[str]) -> str:
    """Collapse whitespace and trim ``text``."""

    return _WHITESPACE.sub(" ", text or "").strip()


def content_hash(text: Optional[str]) -> str:
    """Return the hash used to detect whether an assessment is stale."""

    normalized = normalize_alt_text(text).lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class StrategyKind(str, Enum):
    REMOTE_URL = "remote_url"
    INLINE_BASE64 = "inline_base64"
    OMITTED = "omitted"


class QualityStatus(str, Enum):
    """Quality vocabulary, best to worst."""

    GREAT = "great"
    GOOD = "good"
    REVIEW = "review"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def grade(self) -> str:
        return _STATUS_GRADES[self]

    @classmethod
    def from_score(cls, score: int) -> "QualityStatus":
        if score >= 90:
            return cls.GREAT
        if score >= 75:
            return cls.GOOD
        if score >= 60:
            return cls.REVIEW
        return cls.CRITICAL

    @classmethod
    def worse(cls, first: "QualityStatus", second: "QualityStatus") -> "QualityStatus":
        return first if first.rank >= second.rank else second


_STATUS_RANK = {
    QualityStatus.GREAT: 0,
    QualityStatus.GOOD: 1,
    QualityStatus.REVIEW: 2,
    QualityStatus.CRITICAL: 3,
}
_STATUS_GRADES = {
    QualityStatus.GREAT: "Excellent",
    QualityStatus.GOOD: "Strong",
    QualityStatus.REVIEW: "Needs review",
    QualityStatus.CRITICAL: "Critical",
}


class QueueScope(str, Enum):
    MISSING = "missing"
    ALL = "all"


class DuplicatePolicy(str, Enum):
    """How the orchestrator reacts when the model repeats the existing alt text.

    ``VARY`` moves on to the next image strategy, ``RETRY`` asks the same
    strategy once more before moving on.
    """

    VARY = "vary"
    RETRY = "retry"


@dataclass(frozen=True)
class TokenUsage:
    prompt: int = 0
    completion: int = 0
    total: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.prompt or self.completion or self.total)

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
            total=self.total + other.total,
        )

    def to_dict(self) -> Dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "TokenUsage":
        data = data or {}
        return cls(
            prompt=int(data.get("prompt") or 0),
            completion=int(data.get("completion") or 0),
            total=int(data.get("total") or 0),
        )

    @classmethod
    def from_api(cls, usage: Optional[Mapping[str, Any]]) -> "TokenUsage":
        """Build usage from an OpenAI-style ``usage`` envelope."""

        usage = usage or {}
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        total = int(usage.get("total_tokens") or (prompt + completion))
        return cls(prompt=prompt, completion=completion, total=total)


@dataclass
class ImageAsset:
    """An image owned by the host CMS. Only ``alt_text`` is written back."""

    asset_id: str
    mime_type: str = ""
    file_path: Optional[str] = None
    url: Optional[str] = None
    title: str = ""
    caption: str = ""
    parent_title: str = ""
    filename: str = ""
    alt_text: str = ""
    uploaded_at: Optional[datetime] = None

    @property
    def is_image(self) -> bool:
        return str(self.mime_type or "").lower().startswith("image/")

    @property
    def display_filename(self) -> str:
        if self.filename:
            return self.filename
        if self.file_path:
            return self.file_path.replace("\\", "/").rsplit("/", 1)[-1]
        return self.title


@dataclass(frozen=True)
class GenerationConfig:
    """Immutable snapshot of operator configuration for one orchestration call."""

    model: str = "gpt-4o-mini"
    language: str = "en"
    tone: str = "professional, accessible"
    max_words: int = 16
    custom_prompt: str = ""
    dry_run: bool = False
    include_image: bool = True
    api_key: Optional[str] = field(default=None, repr=False)
    api_url: str = "https://api.openai.com/v1/chat/completions"
    review_enabled: bool = True
    review_model: Optional[str] = None
    review_threshold: int = 70
    max_inline_bytes: int = DEFAULT_MAX_INLINE_BYTES
    request_timeout: float = 30.0
    temperature: float = 0.3
    max_tokens: int = 80
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.VARY

    @property
    def has_credential(self) -> bool:
        return bool((self.api_key or "").strip())

    @property
    def effective_max_words(self) -> int:
        return max(4, int(self.max_words or 0))

    def with_updates(self, **updates: Any) -> "GenerationConfig":
        return replace(self, **updates)


@dataclass(frozen=True)
class ImageStrategy:
    """One way of referencing the image in a request, or why it is unusable."""

    kind: StrategyKind
    payload: Optional[str] = None
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.error is None

    def content_part(self) -> Optional[Dict[str, Any]]:
        if self.kind is StrategyKind.OMITTED or not self.payload:
            return None
        return {"type": "image_url", "image_url": {"url": self.payload}}


@dataclass
class GenerationResult:
    alt_text: str
    usage: TokenUsage
    strategy: ImageStrategy
    model: str
    prompt: str = ""


@dataclass
class ModelReview:
    """Outcome of asking the model to critique a candidate."""

    score: Optional[int] = None
    status: Optional[QualityStatus] = None
    verdict: str = ""
    summary: str = ""
    issues: List[str] = field(default_factory=list)
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.score is not None and self.status is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status.value if self.status else None,
            "verdict": self.verdict,
            "summary": self.summary,
            "issues": list(self.issues),
            "model": self.model,
            "usage": self.usage.to_dict(),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModelReview":
        status = data.get("status")
        score = data.get("score")
        return cls(
            score=int(score) if score is not None else None,
            status=QualityStatus(status) if status else None,
            verdict=str(data.get("verdict") or ""),
            summary=str(data.get("summary") or ""),
            issues=[str(item) for item in data.get("issues") or []],
            model=str(data.get("model") or ""),
            usage=TokenUsage.from_dict(data.get("usage")),
            error=data.get("error"),
        )


@dataclass
class QualityAssessment:
    score: int
    status: QualityStatus
    grade: str
    issues: List[str] = field(default_factory=list)
    summary: str = ""
    heuristic_score: Optional[int] = None
    review: Optional[ModelReview] = None
    content_hash: str = ""
    reviewed_at: Optional[datetime] = None

    @property
    def review_model(self) -> Optional[str]:
        if self.review and self.review.ok:
            return self.review.model
        return None

    def is_current_for(self, alt_text: Optional[str]) -> bool:
        return bool(self.content_hash) and self.content_hash == content_hash(alt_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "status": self.status.value,
            "grade": self.grade,
            "issues": list(self.issues),
            "summary": self.summary,
            "heuristic_score": self.heuristic_score,
            "review": self.review.to_dict() if self.review else None,
            "review_model": self.review_model,
            "content_hash": self.content_hash,
            "reviewed_at": _dt(self.reviewed_at),
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityAssessment":
        review = data.get("review")
        return cls(
            score=int(data["score"]),
            status=QualityStatus(str(data["status"])),
            grade=str(data.get("grade") or ""),
            issues=[str(item) for item in data.get("issues") or []],
            summary=str(data.get("summary") or ""),
            heuristic_score=data.get("heuristic_score"),
            review=ModelReview.from_dict(review) if review else None,
            content_hash=str(data.get("content_hash") or ""),
            reviewed_at=_parse_datetime(data.get("reviewed_at")),
        )

    @classmethod
    def from_json(cls, payload: str) -> "QualityAssessment":
        return cls.from_dict(json.loads(payload))


@dataclass
class GenerationMetadata:
    source: str
    model: str
    strategy: StrategyKind
    usage: TokenUsage
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "model": self.model,
            "strategy": self.strategy.value,
            "tokens": self.usage.to_dict(),
            "generated_at": _dt(self.generated_at),
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationMetadata":
        return cls(
            source=str(data.get("source") or ""),
            model=str(data.get("model") or ""),
            strategy=StrategyKind(str(data.get("strategy") or StrategyKind.OMITTED.value)),
            usage=TokenUsage.from_dict(data.get("tokens")),
            generated_at=_parse_datetime(data.get("generated_at")) or utcnow(),
        )

    @classmethod
    def from_json(cls, payload: str) -> "GenerationMetadata":
        return cls.from_dict(json.loads(payload))


@dataclass
class UsageLedger:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    requests: int = 0
    last_request_at: Optional[datetime] = None
    alert_threshold: int = 0
    alert_sent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "requests": self.requests,
            "last_request_at": _dt(self.last_request_at),
            "alert_threshold": self.alert_threshold,
            "alert_sent": self.alert_sent,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UsageLedger":
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
            requests=int(data.get("requests") or 0),
            last_request_at=_parse_datetime(data.get("last_request_at")),
            alert_threshold=int(data.get("alert_threshold") or 0),
            alert_sent=bool(data.get("alert_sent", False)),
        )

    @classmethod
    def from_json(cls, payload: str) -> "UsageLedger":
        return cls.from_dict(json.loads(payload))


@dataclass
class QueueState:
    scope: QueueScope
    batch_size: int
    cursor: int = 0
    processed: int = 0
    errors: int = 0
    attempted: int = 0
    retry_count: int = 0
    last_run_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    messages: List[str] = field(default_factory=list)
    active: bool = True

    def push_message(self, message: str) -> None:
        self.messages.append(message)
        if len(self.messages) > MAX_QUEUE_MESSAGES:
            del self.messages[: len(self.messages) - MAX_QUEUE_MESSAGES]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.value,
            "batch_size": self.batch_size,
            "cursor": self.cursor,
            "processed": self.processed,
            "errors": self.errors,
            "attempted": self.attempted,
            "retry_count": self.retry_count,
            "last_run_at": _dt(self.last_run_at),
            "started_at": _dt(self.started_at),
            "messages": list(self.messages[-MAX_QUEUE_MESSAGES:]),
            "active": self.active,
        }

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueueState":
        return cls(
            scope=QueueScope(str(data.get("scope") or QueueScope.MISSING.value)),
            batch_size=int(data.get("batch_size") or 1),
            cursor=int(data.get("cursor") or 0),
            processed=int(data.get("processed") or 0),
            errors=int(data.get("errors") or 0),
            attempted=int(data.get("attempted") or 0),
            retry_count=int(data.get("retry_count") or 0),
            last_run_at=_parse_datetime(data.get("last_run_at")),
            started_at=_parse_datetime(data.get("started_at")),
            messages=[str(item) for item in data.get("messages") or []][-MAX_QUEUE_MESSAGES:],
            active=bool(data.get("active", True)),
        )

    @classmethod
    def from_json(cls, payload: str) -> "QueueState":
        return cls.from_dict(json.loads(payload))


@dataclass(frozen=True)
class MediaStats:
    total: int
    with_alt: int
    missing: int
    generated: int
    coverage: float

    @classmethod
    def compute(cls, total: int, with_alt: int, generated: int) -> "MediaStats":
        coverage = round((with_alt / total) * 100, 1) if total else 0.0
        return cls(
            total=total,
            with_alt=with_alt,
            missing=max(0, total - with_alt),
            generated=generated,
            coverage=coverage,
        )


Feedback = Tuple[str, ...]


__all__ = [
    "DEFAULT_MAX_INLINE_BYTES",
    "DuplicatePolicy",
    "Feedback",
    "GenerationConfig",
    "GenerationMetadata",
    "GenerationResult",
    "ImageAsset",
    "ImageStrategy",
    "MAX_QUEUE_MESSAGES",
    "MediaStats",
    "ModelReview",
    "QualityAssessment",
    "QualityStatus",
    "QueueScope",
    "QueueState",
    "StrategyKind",
    "TokenUsage",
    "UsageLedger",
    "content_hash",
    "normalize_alt_text",
    "utcnow",
]
