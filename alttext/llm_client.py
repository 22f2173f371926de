"""Rate-limit aware client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Optional

import regex
import requests

from alttext import logging_manager as log_mgr
from alttext.config_manager.constants import DEFAULT_API_URL, DEFAULT_REQUEST_TIMEOUT
from alttext.errors import ApiError, RateLimitExceeded, TransportError, redact_secrets
from alttext.models import GenerationConfig, TokenUsage

logger = log_mgr.get_logger().getChild("llm_client")

USER_AGENT = "alttext-tools/1.0 (+accessibility alt text generator)"

_TRY_AGAIN_PATTERN = regex.compile(
    r"try again in\s*([0-9]+(?:\.[0-9]+)?)\s*(ms|s)\b", regex.IGNORECASE
)


@dataclass(frozen=True)
class ClientSettings:
    """Immutable collection of configuration parameters for an :class:`LLMClient`."""

    api_url: str = DEFAULT_API_URL
    api_key: Optional[str] = None
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = 3
    backoff_base: float = 1.0
    max_backoff_seconds: float = 60.0

    def with_updates(self, **updates: Any) -> "ClientSettings":
        """Return a copy of the settings with provided keyword overrides applied."""

        return replace(self, **updates)

    def __repr__(self) -> str:  # pragma: no cover - keeps the key out of logs
        return (
            f"ClientSettings(api_url={self.api_url!r}, timeout={self.timeout!r}, "
            f"max_retries={self.max_retries!r})"
        )


@dataclass
class LLMResponse:
    """Successful response returned by :meth:`LLMClient.send_chat_request`."""

    text: str
    status_code: int
    token_usage: TokenUsage
    raw: Optional[Any] = None
    attempts: int = 1
    waited_seconds: float = 0.0


def parse_retry_after(
    headers: Optional[Dict[str, str]] = None,
    message: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Optional[float]:
    """Return the server-suggested wait in seconds, if any."""

    headers = {str(k).lower(): v for k, v in (headers or {}).items()}
    raw_ms = headers.get("retry-after-ms")
    if raw_ms:
        try:
            return max(0.0, float(raw_ms) / 1000.0)
        except ValueError:
            pass
    raw = headers.get("retry-after")
    if raw:
        try:
            return max(0.0, float(raw))
        except ValueError:
            try:
                when = parsedate_to_datetime(raw)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                if when.tzinfo is None:
                    when = when.replace(tzinfo=timezone.utc)
                current = now or datetime.now(timezone.utc)
                return max(0.0, (when - current).total_seconds())
    if message:
        match = _TRY_AGAIN_PATTERN.search(message)
        if match:
            value = float(match.group(1))
            return value / 1000.0 if match.group(2).lower() == "ms" else value
    return None


def extract_error_message(response: requests.Response) -> str:
    """Return the provider error message from an error envelope or body preview."""

    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str) and error:
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    preview = (response.text or "")[:300].strip()
    return preview or f"HTTP {response.status_code}"


def _message_content(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


def build_chat_payload(
    *,
    model: str,
    system_prompt: str,
    user_text: str,
    image_part: Optional[Dict[str, Any]] = None,
    temperature: float = 0.3,
    max_tokens: int = 80,
) -> Dict[str, Any]:
    """Assemble a chat completion request with optional image content."""

    if image_part:
        user_content: Any = [{"type": "text", "text": user_text}, image_part]
    else:
        user_content = user_text
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


class LLMClient:
    """Stateless helper for issuing chat requests with 429 handling."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def api_url(self) -> str:
        return self._settings.api_url

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"
        return headers

    def _backoff(self, attempt: int) -> float:
        return self._settings.backoff_base * (2 ** attempt)

    def _post(self, payload: Dict[str, Any], timeout: float) -> requests.Response:
        try:
            return self._session.post(
                self.api_url,
                json=payload,
                headers=self._headers(),
                timeout=timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise TransportError(
                f"Request to generation API failed: {exc}",
                data={"exception": type(exc).__name__},
            ) from exc

    def _parse_success(
        self, response: requests.Response, attempts: int, waited: float
    ) -> LLMResponse:
        try:
            data = response.json()
        except ValueError as exc:
            raise ApiError(
                f"Invalid JSON response: {exc}", status=response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise ApiError("Unexpected response payload", status=response.status_code)
        usage = TokenUsage.from_api(data.get("usage"))
        logger.debug(
            "Token usage - prompt: %s, completion: %s, total: %s",
            usage.prompt,
            usage.completion,
            usage.total,
        )
        return LLMResponse(
            text=_message_content(data),
            status_code=response.status_code,
            token_usage=usage,
            raw=data,
            attempts=attempts,
            waited_seconds=waited,
        )

    def send_chat_request(
        self,
        payload: Dict[str, Any],
        *,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Send ``payload``, waiting and retrying on HTTP 429 up to ``max_retries`` times.

        Raises :class:`RateLimitExceeded` once the retries are exhausted,
        :class:`ApiError` for other error statuses and :class:`TransportError`
        for network failures (which are not retried here).
        """

        retries = self._settings.max_retries if max_retries is None else max(0, max_retries)
        request_timeout = timeout or self._settings.timeout
        waited = 0.0
        last_delay = 0.0
        attempt = 0

        while True:
            response = self._post(payload, request_timeout)
            status = response.status_code

            if status == 429:
                message = extract_error_message(response)
                suggested = parse_retry_after(dict(response.headers), message)
                delay = suggested if suggested is not None else self._backoff(attempt)
                delay = min(delay, self._settings.max_backoff_seconds)
                last_delay = delay
                if attempt >= retries:
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {attempt + 1} attempts: {message}",
                        retry_after=last_delay,
                        attempts=attempt + 1,
                    )
                logger.info(
                    "Rate limited; retrying in %.2fs (%s/%s)",
                    delay,
                    attempt + 1,
                    retries,
                    extra={"event": "llm.rate_limited", "delay": delay},
                )
                self._sleep(delay)
                waited += delay
                attempt += 1
                continue

            if status >= 400:
                message = redact_secrets(extract_error_message(response))
                logger.debug(
                    "Received error response: %s - %s",
                    status,
                    message,
                    extra={"event": "llm.api_error"},
                )
                raise ApiError(message, status=status)

            return self._parse_success(response, attempt + 1, waited)

    def close(self) -> None:
        """Release any network resources associated with this client."""

        self._session.close()

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - trivial
        self.close()


def create_client(
    config: GenerationConfig,
    *,
    max_retries: int = 3,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> LLMClient:
    """Return a new :class:`LLMClient` configured from a generation snapshot."""

    settings = ClientSettings(
        api_url=config.api_url,
        api_key=config.api_key,
        timeout=config.request_timeout,
        max_retries=max_retries,
    )
    return LLMClient(settings=settings, session=session, sleep=sleep)


__all__ = [
    "ClientSettings",
    "LLMClient",
    "LLMResponse",
    "USER_AGENT",
    "build_chat_payload",
    "create_client",
    "extract_error_message",
    "parse_retry_after",
]
