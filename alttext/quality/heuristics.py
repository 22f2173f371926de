"""Offline scoring rules for alt text.

The scorer starts from 100 and applies penalties and caps. It never touches the
network and returns the same result for the same inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import regex

from alttext.models import QualityStatus, normalize_alt_text

PLACEHOLDER_WORDS = frozenset(
    {
        "alt",
        "alt text",
        "default",
        "dsc",
        "graphic",
        "image",
        "img",
        "n/a",
        "na",
        "none",
        "null",
        "photo",
        "picture",
        "pic",
        "placeholder",
        "sample",
        "tbd",
        "test",
        "todo",
        "untitled",
    }
)
PLACEHOLDER_SCORE = 5
PLACEHOLDER_CAP = 10

_PLACEHOLDER_SUBSTRING = regex.compile(
    r"placeholder|lorem ipsum|untitled|insert alt|alt text here|\bdsc[_-]?\d|\bimg[_-]?\d|\btodo\b|\btbd\b",
    regex.IGNORECASE,
)
_FILLER_PATTERN = regex.compile(r"\b(?:image|photo|picture|graphic)s?\b", regex.IGNORECASE)
_WORD_PATTERN = regex.compile(r"[\p{L}\p{N}][\p{L}\p{N}'’-]*")
_LONG_WORD_PATTERN = regex.compile(r"\p{L}{4,}")
_PUNCTUATION_PATTERN = regex.compile(r"[^\p{L}\p{N}\s]+")
_EXTENSION_PATTERN = regex.compile(r"\.[A-Za-z0-9]{2,5}$")

MIN_LENGTH = 45
MAX_LENGTH = 160


@dataclass
class HeuristicResult:
    score: int
    status: QualityStatus
    issues: List[str] = field(default_factory=list)

    @property
    def grade(self) -> str:
        return self.status.grade


def comparable(value: Optional[str]) -> str:
    """Lowercase ``value`` and drop punctuation for equality checks."""

    text = _PUNCTUATION_PATTERN.sub(" ", (value or "").replace("_", " "))
    return normalize_alt_text(text).casefold()


def _filename_stem(filename: Optional[str]) -> str:
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1]
    return _EXTENSION_PATTERN.sub("", name)


def score_alt_text(
    text: Optional[str],
    *,
    title: Optional[str] = None,
    filename: Optional[str] = None,
) -> HeuristicResult:
    """Score ``text`` against the asset's ``title`` and ``filename``."""

    normalized = normalize_alt_text(text)
    if not normalized:
        return HeuristicResult(0, QualityStatus.CRITICAL, ["Alt text is empty."])

    key = comparable(normalized)
    if key in PLACEHOLDER_WORDS or normalized.casefold() in PLACEHOLDER_WORDS:
        return HeuristicResult(
            PLACEHOLDER_SCORE,
            QualityStatus.CRITICAL,
            ["Alt text is a placeholder, not a description."],
        )

    score = 100
    cap = 100
    issues: List[str] = []

    if len(normalized) < MIN_LENGTH:
        score -= 25
        issues.append("Alt text is very short; add concrete visual detail.")
    elif len(normalized) > MAX_LENGTH:
        score -= 15
        issues.append("Alt text is long; keep it concise.")

    if _FILLER_PATTERN.search(normalized):
        score -= 10
        issues.append('Avoid filler words such as "image" or "photo".')

    if _PLACEHOLDER_SUBSTRING.search(normalized):
        cap = min(cap, PLACEHOLDER_CAP)
        issues.append("Alt text contains placeholder wording.")

    words = _WORD_PATTERN.findall(normalized)
    if len(words) < 4:
        cap = min(cap, 10)
        issues.append("Alt text has fewer than 4 words.")
    elif len(words) < 6:
        cap = min(cap, 25)
        issues.append("Alt text has fewer than 6 words.")
    elif len(words) < 8:
        cap = min(cap, 45)
        issues.append("Alt text has fewer than 8 words.")

    if title and key == comparable(title):
        score -= 12
        issues.append("Alt text only repeats the image title.")
    stem = _filename_stem(filename)
    if stem and key == comparable(stem):
        score -= 20
        issues.append("Alt text only repeats the file name.")

    if not _LONG_WORD_PATTERN.search(normalized):
        score -= 15
        issues.append("Alt text has no descriptive words.")

    score = max(0, min(100, score, cap))
    return HeuristicResult(score, QualityStatus.from_score(score), issues)


__all__ = [
    "HeuristicResult",
    "MAX_LENGTH",
    "MIN_LENGTH",
    "PLACEHOLDER_CAP",
    "PLACEHOLDER_WORDS",
    "comparable",
    "score_alt_text",
]
