"""Error taxonomy for the alt text pipeline.

Every failure raised by the core carries an :class:`ErrorKind` tag and a
structured ``data`` payload so callers (the queue manager, the service facade)
can classify outcomes without inspecting message strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional

import regex

_INCORRECT_KEY_PATTERN = regex.compile(r"(Incorrect API key provided:\s*)([A-Za-z0-9_*-]+)", regex.IGNORECASE)
_SECRET_KEY_PATTERN = regex.compile(r"(sk-[A-Za-z0-9_-]{4})([A-Za-z0-9_-]{10,})([A-Za-z0-9_-]{4})")
_BEARER_PATTERN = regex.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]{8,})", regex.IGNORECASE)
_KEY_PARAM_PATTERN = regex.compile(r"((?:api[_-]?key|key|token)=)([^&\s\"']{8,})", regex.IGNORECASE)


def _mask(token: str) -> str:
    if len(token) <= 8:
        return "*" * len(token)
    return token[:4] + "*" * (len(token) - 8) + token[-4:]


def redact_secrets(message: Optional[str]) -> str:
    """Return ``message`` with API keys and bearer tokens masked."""

    if not message:
        return message or ""
    text = str(message)
    text = _INCORRECT_KEY_PATTERN.sub(lambda m: m.group(1) + _mask(m.group(2)), text)
    text = _SECRET_KEY_PATTERN.sub(
        lambda m: m.group(1) + "*" * len(m.group(2)) + m.group(3), text
    )
    text = _BEARER_PATTERN.sub(lambda m: m.group(1) + _mask(m.group(2)), text)
    text = _KEY_PARAM_PATTERN.sub(lambda m: m.group(1) + _mask(m.group(2)), text)
    return text


class ErrorKind(str, Enum):
    """Enumeration of every failure (and signal) the core can raise."""

    MISSING_CREDENTIAL = "missing_credential"
    NOT_AN_IMAGE = "not_an_image"
    DRY_RUN = "dry_run"
    DUPLICATE_ALT = "duplicate_alt"
    IMAGE_UNAVAILABLE = "image_unavailable"
    API_ERROR = "api_error"
    RATE_LIMITED = "rate_limited"
    TRANSPORT = "transport"
    REVIEW_FAILED = "review_failed"
    ASSET_NOT_FOUND = "asset_not_found"


class AltTextError(RuntimeError):
    """Base class for tagged pipeline errors."""

    kind: ErrorKind = ErrorKind.API_ERROR
    fatal: bool = False
    retryable: bool = False
    is_failure: bool = True

    def __init__(self, message: str, *, data: Optional[Mapping[str, Any]] = None) -> None:
        self.message = redact_secrets(message)
        super().__init__(self.message)
        self.data: Dict[str, Any] = dict(data or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "data": dict(self.data)}


class MissingCredential(AltTextError):
    """Raised when no API key is configured. Halts any running queue."""

    kind = ErrorKind.MISSING_CREDENTIAL
    fatal = True

    def __init__(self, message: str = "API key missing.") -> None:
        super().__init__(message)


class NotAnImage(AltTextError):
    kind = ErrorKind.NOT_AN_IMAGE

    def __init__(self, asset_id: Any, mime_type: Optional[str]) -> None:
        super().__init__(
            "Attachment is not an image.",
            data={"asset_id": asset_id, "mime_type": mime_type},
        )


class AssetNotFound(AltTextError):
    kind = ErrorKind.ASSET_NOT_FOUND

    def __init__(self, asset_id: Any) -> None:
        super().__init__(f"Asset {asset_id} not found.", data={"asset_id": asset_id})


class DryRun(AltTextError):
    """Signal raised instead of calling the API when dry-run mode is enabled.

    Travels through the error channel but is not a failure: ``is_failure`` is
    False and queue processing counts it as a success.
    """

    kind = ErrorKind.DRY_RUN
    is_failure = False

    def __init__(self, prompt: str, *, asset_id: Any = None) -> None:
        super().__init__(
            "Dry run enabled; request not sent.",
            data={"prompt": prompt, "asset_id": asset_id},
        )

    @property
    def prompt(self) -> str:
        return str(self.data.get("prompt", ""))


class DuplicateAlt(AltTextError):
    kind = ErrorKind.DUPLICATE_ALT

    def __init__(self, alt_text: str, *, attempts: int) -> None:
        super().__init__(
            "Generated alt text matches the existing alt text.",
            data={"alt_text": alt_text, "attempts": attempts},
        )


class ImageUnavailable(AltTextError):
    kind = ErrorKind.IMAGE_UNAVAILABLE


class ApiError(AltTextError):
    """Non-2xx response from the generation API."""

    kind = ErrorKind.API_ERROR
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        payload = dict(data or {})
        payload["status"] = status
        super().__init__(message, data=payload)

    @property
    def status(self) -> Optional[int]:
        return self.data.get("status")


class RateLimitExceeded(ApiError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, *, retry_after: float, attempts: int) -> None:
        super().__init__(
            message,
            status=429,
            data={"retry_after": retry_after, "attempts": attempts},
        )

    @property
    def retry_after(self) -> float:
        return float(self.data.get("retry_after") or 0.0)


class TransportError(AltTextError):
    """Network-level failure (DNS, TLS, refused connection). Never retried locally."""

    kind = ErrorKind.TRANSPORT


class ReviewFailed(AltTextError):
    kind = ErrorKind.REVIEW_FAILED


__all__ = [
    "AltTextError",
    "ApiError",
    "AssetNotFound",
    "DryRun",
    "DuplicateAlt",
    "ErrorKind",
    "ImageUnavailable",
    "MissingCredential",
    "NotAnImage",
    "RateLimitExceeded",
    "ReviewFailed",
    "TransportError",
    "redact_secrets",
]
