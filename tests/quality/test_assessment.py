from __future__ import annotations

from datetime import datetime, timezone

from alttext.models import ModelReview, QualityStatus, TokenUsage, content_hash
from alttext.quality import QualityReviewer, combine, dedupe_issues
from alttext.quality.heuristics import HeuristicResult, score_alt_text
from tests.helpers.fakes import make_asset, make_config

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)
GOOD_TEXT = "A golden retriever catching a red frisbee mid-air in a sunny park."


class _StubReviewer:
    def __init__(self, review: ModelReview) -> None:
        self.review_result = review
        self.calls = 0

    def review(self, alt_text, asset, strategy, config, *, client=None):
        self.calls += 1
        return self.review_result


def _review(score, status, summary="", issues=()):
    return ModelReview(
        score=score, status=status, summary=summary, issues=list(issues), model="gpt-4o-mini",
        usage=TokenUsage(20, 5, 25),
    )


def test_combined_score_is_minimum_and_status_is_worse():
    heuristic = HeuristicResult(100, QualityStatus.GREAT, [])
    review = _review(80, QualityStatus.REVIEW, "Mostly fine.")

    assessment = combine(heuristic, review, digest="h", reviewed_at=NOW)

    assert assessment.score == 80
    assert assessment.status is QualityStatus.REVIEW
    assert assessment.grade == "Needs review"
    assert assessment.heuristic_score == 100
    assert assessment.review_model == "gpt-4o-mini"


def test_heuristic_can_be_the_lower_side():
    heuristic = HeuristicResult(45, QualityStatus.CRITICAL, ["Alt text has fewer than 8 words."])
    review = _review(95, QualityStatus.GREAT, "Accurate.")

    assessment = combine(heuristic, review, digest="h", reviewed_at=NOW)

    assert assessment.score == 45
    assert assessment.status is QualityStatus.CRITICAL


def test_issues_are_summary_then_review_then_heuristic_deduplicated():
    heuristic = HeuristicResult(70, QualityStatus.REVIEW, ["Too short.", "Avoid filler."])
    review = _review(60, QualityStatus.REVIEW, "Too short.", ["Name the breed.", "avoid filler."])

    assessment = combine(heuristic, review, digest="h", reviewed_at=NOW)

    assert assessment.issues == ["Too short.", "Name the breed.", "avoid filler."]


def test_failed_review_leaves_heuristic_alone_and_records_error():
    heuristic = HeuristicResult(75, QualityStatus.GOOD, ["Alt text is very short; add concrete visual detail."])
    review = ModelReview(model="gpt-4o-mini", error="Review response did not contain JSON.")

    assessment = combine(heuristic, review, digest="h", reviewed_at=NOW)

    assert assessment.score == 75
    assert assessment.status is QualityStatus.GOOD
    assert assessment.review.error == "Review response did not contain JSON."
    assert assessment.review_model is None


def test_reviewer_reuses_review_for_unchanged_text():
    stub = _StubReviewer(_review(90, QualityStatus.GREAT, "Great."))
    reviewer = QualityReviewer(stub, clock=lambda: NOW)
    asset = make_asset(alt_text=GOOD_TEXT)

    first = reviewer.assess(GOOD_TEXT, asset, None, make_config())
    second = reviewer.assess(f"  {GOOD_TEXT} ", asset, None, make_config(), previous=first)
    third = reviewer.assess("A different description of the same park.", asset, None, make_config(), previous=first)

    assert stub.calls == 2
    assert second.review is first.review
    assert first.content_hash == content_hash(GOOD_TEXT)
    assert third.content_hash != first.content_hash


def test_review_disabled_uses_heuristic_only():
    stub = _StubReviewer(_review(10, QualityStatus.CRITICAL))
    reviewer = QualityReviewer(stub, clock=lambda: NOW)

    assessment = reviewer.assess(GOOD_TEXT, make_asset(), None, make_config(review_enabled=False))

    assert stub.calls == 0
    assert assessment.score == score_alt_text(GOOD_TEXT).score
    assert assessment.review is None
    assert assessment.reviewed_at == NOW


def test_assessment_round_trips_through_json_dict():
    assessment = combine(
        HeuristicResult(90, QualityStatus.GREAT, []),
        _review(85, QualityStatus.GOOD, "Solid."),
        digest=content_hash(GOOD_TEXT),
        reviewed_at=NOW,
    )

    restored = type(assessment).from_dict(assessment.to_dict())

    assert restored == assessment
    assert restored.is_current_for(GOOD_TEXT)


def test_dedupe_issues_ignores_blanks():
    assert dedupe_issues(["", None, "A", "a", " B "]) == ["A", "B"]
