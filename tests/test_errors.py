from __future__ import annotations

from alttext.errors import (
    ApiError,
    DryRun,
    ErrorKind,
    MissingCredential,
    NotAnImage,
    RateLimitExceeded,
    redact_secrets,
)


def test_incorrect_key_message_keeps_first_and_last_four():
    message = redact_secrets("Incorrect API key provided: sk-abcd1234567890wxyz. See docs.")

    assert message == "Incorrect API key provided: sk-a" + "*" * 13 + "wxyz. See docs."


def test_bare_secret_keys_and_bearer_tokens_are_masked():
    text = "key sk-live1234567890abcdefWXYZ and header Bearer abcdefghijklmnop"

    masked = redact_secrets(text)

    assert "1234567890abcdef" not in masked
    assert "sk-live" in masked and masked.count("WXYZ") == 1
    assert "abcdefghijklmnop" not in masked


def test_query_string_keys_are_masked():
    masked = redact_secrets("GET /image?api_key=supersecretvalue&size=2")

    assert "supersecretvalue" not in masked
    assert "size=2" in masked


def test_error_messages_are_redacted_on_construction():
    error = ApiError("Incorrect API key provided: sk-abcdefghijklmnopqrstu", status=401)

    assert "efghijklmnopq" not in str(error)
    assert error.to_dict()["kind"] == "api_error"
    assert error.to_dict()["data"]["status"] == 401


def test_taxonomy_flags():
    assert MissingCredential().fatal is True
    assert MissingCredential().message == "API key missing."
    assert DryRun("prompt text").is_failure is False
    assert DryRun("prompt text").prompt == "prompt text"
    assert NotAnImage("7", "application/pdf").kind is ErrorKind.NOT_AN_IMAGE
    limited = RateLimitExceeded("slow down", retry_after=2.5, attempts=4)
    assert isinstance(limited, ApiError)
    assert limited.retryable is True
    assert limited.retry_after == 2.5
