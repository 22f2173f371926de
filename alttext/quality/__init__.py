"""Quality gate for generated alt text."""

from .assessment import QualityReviewer, combine, dedupe_issues
from .heuristics import HeuristicResult, score_alt_text
from .model_review import ModelReviewer, parse_review_payload, verdict_status

__all__ = [
    "HeuristicResult",
    "ModelReviewer",
    "QualityReviewer",
    "combine",
    "dedupe_issues",
    "parse_review_payload",
    "score_alt_text",
    "verdict_status",
]
