from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from alttext.errors import ApiError, RateLimitExceeded, TransportError
from alttext.llm_client import (
    ClientSettings,
    LLMClient,
    build_chat_payload,
    parse_retry_after,
)
from tests.helpers.fakes import FakeResponse, FakeSession, chat_completion


def _client(session: FakeSession, sleeps: list, **settings) -> LLMClient:
    values = {"api_key": "sk-test-1234567890abcdef", "max_retries": 3}
    values.update(settings)
    return LLMClient(ClientSettings(**values), session=session, sleep=sleeps.append)


def _rate_limited(headers=None, message="Rate limit reached") -> FakeResponse:
    return FakeResponse(429, {"error": {"message": message}}, headers=headers or {})


def test_three_rate_limits_then_success_waits_for_retry_after():
    session = FakeSession(
        [
            _rate_limited({"retry-after": "2"}),
            _rate_limited({"retry-after": "2"}),
            _rate_limited({"retry-after": "2"}),
            FakeResponse(200, chat_completion("A red bicycle.", 50, 12, 62)),
        ]
    )
    sleeps: list = []

    response = _client(session, sleeps).send_chat_request({"model": "m"}, max_retries=3)

    assert sum(sleeps) >= 6
    assert sleeps == [2.0, 2.0, 2.0]
    assert response.text == "A red bicycle."
    assert response.token_usage.total == 62
    assert response.attempts == 4
    assert response.waited_seconds == pytest.approx(6.0)
    assert len(session.posts) == 4


def test_rate_limit_exhaustion_raises_with_last_delay():
    session = FakeSession([_rate_limited({"retry-after": "3"}) for _ in range(3)])
    sleeps: list = []

    with pytest.raises(RateLimitExceeded) as excinfo:
        _client(session, sleeps).send_chat_request({}, max_retries=2)

    assert excinfo.value.retry_after == 3.0
    assert excinfo.value.status == 429
    assert excinfo.value.data["attempts"] == 3
    assert sleeps == [3.0, 3.0]


def test_retry_delay_parsed_from_error_message():
    session = FakeSession(
        [
            _rate_limited(message="Rate limit reached. Please try again in 750ms."),
            FakeResponse(200, chat_completion("ok text")),
        ]
    )
    sleeps: list = []

    _client(session, sleeps).send_chat_request({})

    assert sleeps == [pytest.approx(0.75)]


def test_exponential_backoff_without_hint_is_capped():
    session = FakeSession(
        [_rate_limited(), _rate_limited(), _rate_limited(), FakeResponse(200, chat_completion("x y z"))]
    )
    sleeps: list = []

    _client(session, sleeps, backoff_base=1.0, max_backoff_seconds=3.0).send_chat_request({})

    assert sleeps == [1.0, 2.0, 3.0]


def test_error_status_raises_redacted_api_error():
    key = "sk-proj-abcdefghijklmnopqrstuvwxyz123456"
    session = FakeSession(
        [FakeResponse(401, {"error": {"message": f"Incorrect API key provided: {key}"}})]
    )

    with pytest.raises(ApiError) as excinfo:
        _client(session, []).send_chat_request({})

    assert excinfo.value.status == 401
    assert key not in excinfo.value.message
    assert "sk-p" in excinfo.value.message


def test_error_without_json_uses_body_preview():
    session = FakeSession([FakeResponse(502, None, text="Bad gateway from upstream")])

    with pytest.raises(ApiError) as excinfo:
        _client(session, []).send_chat_request({})

    assert "Bad gateway" in excinfo.value.message


def test_transport_errors_are_wrapped_and_not_retried():
    session = FakeSession([requests.ConnectionError("connection refused")])
    sleeps: list = []

    with pytest.raises(TransportError):
        _client(session, sleeps).send_chat_request({})

    assert len(session.posts) == 1
    assert sleeps == []


def test_non_json_success_body_is_an_api_error():
    session = FakeSession([FakeResponse(200, None, text="<html>")])

    with pytest.raises(ApiError):
        _client(session, []).send_chat_request({})


def test_request_carries_bearer_token_and_json_body():
    session = FakeSession([FakeResponse(200, chat_completion("hello there"))])

    _client(session, [], api_url="https://llm.example.com/v1/chat").send_chat_request({"model": "m"})

    call = session.posts[0]
    assert call["url"] == "https://llm.example.com/v1/chat"
    assert call["headers"]["Authorization"] == "Bearer sk-test-1234567890abcdef"
    assert call["json"] == {"model": "m"}


def test_parse_retry_after_variants():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert parse_retry_after({"Retry-After-Ms": "1500"}) == 1.5
    assert parse_retry_after({"retry-after": "4"}) == 4.0
    assert parse_retry_after(
        {"retry-after": "Mon, 01 Jan 2024 12:00:10 GMT"}, now=now
    ) == pytest.approx(10.0)
    assert parse_retry_after({}, "Please try again in 2s.") == 2.0
    assert parse_retry_after({}, "no hint here") is None


def test_build_chat_payload_with_and_without_image():
    image_part = {"type": "image_url", "image_url": {"url": "https://cdn.example.com/a.jpg"}}

    with_image = build_chat_payload(
        model="gpt-4o-mini", system_prompt="sys", user_text="describe", image_part=image_part
    )
    text_only = build_chat_payload(model="gpt-4o-mini", system_prompt="sys", user_text="describe")

    assert with_image["messages"][1]["content"] == [{"type": "text", "text": "describe"}, image_part]
    assert text_only["messages"][1]["content"] == "describe"
    assert text_only["temperature"] == 0.3
    assert text_only["max_tokens"] == 80
