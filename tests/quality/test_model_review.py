from __future__ import annotations

import pytest

from alttext.errors import ApiError, ReviewFailed
from alttext.models import QualityStatus
from alttext.quality.model_review import (
    ModelReviewer,
    parse_review_payload,
    review_from_payload,
    verdict_status,
)
from tests.helpers.fakes import REMOTE, ScriptedClient, llm_response, make_asset, make_config


def test_parse_plain_json():
    assert parse_review_payload('{"score": 88, "verdict": "good"}') == {"score": 88, "verdict": "good"}


def test_parse_strips_code_fences():
    text = 'Here you go:\n```json\n{"score": 70, "issues": ["Vague"]}\n```'

    assert parse_review_payload(text)["issues"] == ["Vague"]


def test_parse_extracts_first_balanced_object():
    text = 'Sure! {"score": 64, "summary": "Uses {braces} inside", "issues": []} Thanks {not json}'

    data = parse_review_payload(text)

    assert data["score"] == 64
    assert data["summary"] == "Uses {braces} inside"


@pytest.mark.parametrize("text", ["", "no json at all", "{broken", "[1, 2, 3]"])
def test_parse_failures_raise_review_failed(text):
    with pytest.raises(ReviewFailed):
        parse_review_payload(text)


def test_verdicts_map_to_status_vocabulary():
    assert verdict_status("Excellent") is QualityStatus.GREAT
    assert verdict_status("needs_review") is QualityStatus.REVIEW
    assert verdict_status("FAIL") is QualityStatus.CRITICAL
    assert verdict_status("meh") is None


def test_unknown_verdict_falls_back_to_score():
    review = review_from_payload({"score": "77.6", "verdict": "meh"}, model="m")

    assert review.score == 78
    assert review.status is QualityStatus.GOOD


def test_missing_score_is_a_failure():
    with pytest.raises(ReviewFailed):
        review_from_payload({"verdict": "good"}, model="m")


def test_reviewer_sends_image_and_uses_review_model():
    client = ScriptedClient(
        [llm_response('{"score": 91, "verdict": "excellent", "summary": "Clear.", "issues": "None"}', 30, 8)]
    )
    config = make_config(review_model="gpt-4o")

    review = ModelReviewer(client.factory()).review("A red bicycle.", make_asset(), REMOTE, config)

    assert review.ok
    assert review.score == 91
    assert review.status is QualityStatus.GREAT
    assert review.model == "gpt-4o"
    assert review.usage.total == 38
    assert review.issues == ["None"]
    payload = client.payloads[0]
    assert payload["model"] == "gpt-4o"
    assert payload["messages"][1]["content"][1]["image_url"]["url"] == REMOTE.payload


def test_reviewer_degrades_on_api_errors():
    client = ScriptedClient([ApiError("Service unavailable", status=503)])

    review = ModelReviewer(client.factory()).review("A red bicycle.", make_asset(), None, make_config())

    assert not review.ok
    assert review.error == "Service unavailable"
    assert review.model == "gpt-4o-mini"


def test_reviewer_degrades_on_unparseable_output_but_keeps_usage():
    client = ScriptedClient([llm_response("I think it's fine!", 12, 4)])

    review = ModelReviewer(client.factory()).review("A red bicycle.", make_asset(), None, make_config())

    assert not review.ok
    assert "JSON" in review.error
    assert review.usage.total == 16


@pytest.mark.parametrize("score", [float("inf"), float("-inf"), float("nan")])
def test_review_from_payload_rejects_non_finite_scores(score):
    with pytest.raises(ReviewFailed):
        review_from_payload({"score": score, "verdict": "good"}, model="m")


@pytest.mark.parametrize(
    "text",
    [
        '{"score": Infinity, "verdict": "good"}',
        '{"score": NaN, "verdict": "good"}',
        '{"score": 1e999}',
    ],
)
def test_reviewer_degrades_on_non_finite_score(text):
    client = ScriptedClient([llm_response(text, 12, 4)])

    review = ModelReviewer(client.factory()).review("A red bicycle.", make_asset(), None, make_config())

    assert not review.ok
    assert review.error == "Review JSON has no numeric score."
    assert review.usage.total == 16
