"""Prompt templates used for communicating with the LLM."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import regex

from alttext.models import GenerationConfig, ImageAsset, normalize_alt_text

SYSTEM_PROMPT = "You write short, descriptive, accessible image ALT text."

REVIEW_SYSTEM_PROMPT = (
    "You are an accessibility reviewer who grades image ALT text. "
    "Respond with JSON only."
)

_TAG_PATTERN = regex.compile(r"<[^>]*>")
_CONTROL_PATTERN = regex.compile(r"[\p{Cc}\p{Cf}]+")
_LABEL_PATTERN = regex.compile(r"^\s*(?:alt(?:ernative)?[\s_-]*text|alt)\s*[:\-]\s*", regex.IGNORECASE)
_QUOTE_PAIRS = (('"', '"'), ("'", "'"), ("“", "”"), ("‘", "’"), ("`", "`"))


def sanitize_line(value: Optional[str]) -> str:
    """Return ``value`` as a single line of plain text."""

    text = _TAG_PATTERN.sub(" ", value or "")
    text = _CONTROL_PATTERN.sub(" ", text)
    return normalize_alt_text(text)


def _strip_quotes(text: str) -> str:
    changed = True
    while changed and len(text) >= 2:
        changed = False
        for opening, closing in _QUOTE_PAIRS:
            if text.startswith(opening) and text.endswith(closing):
                text = text[len(opening) : len(text) - len(closing)].strip()
                changed = True
                break
    return text


def clean_alt_text(raw: Optional[str]) -> str:
    """Normalise a model response into bare alt text."""

    text = sanitize_line(raw)
    text = _LABEL_PATTERN.sub("", text)
    return _strip_quotes(text.strip())


def _base_instruction(config: GenerationConfig) -> str:
    return (
        f"Write concise, descriptive ALT text in {config.language or 'en'} "
        f"for the image below. Tone: {config.tone}. "
        f"Use at most {config.effective_max_words} words. "
        "Describe only what is visible; do not guess at intent or emotions. "
        "Avoid filler such as \"image of\", \"photo of\" or \"picture of\", "
        "and never answer with placeholder words like \"image\", \"test\" or \"untitled\". "
        "Prefer proper nouns from the context when they match what is shown. "
        "Return only the ALT text, without quotes or labels."
    )


def _context_lines(asset: ImageAsset, existing_alt: Optional[str]) -> List[str]:
    lines = [f"Filename: {sanitize_line(asset.display_filename)}"]
    for label, value in (
        ("Title", asset.title),
        ("Caption", asset.caption),
        ("Page", asset.parent_title),
        ("Existing alt text", existing_alt),
    ):
        clean = sanitize_line(value)
        if clean:
            lines.append(f"{label}: {clean}")
    return lines


def build_prompt(
    asset: ImageAsset,
    config: GenerationConfig,
    existing_alt: Optional[str] = None,
    is_retry: bool = False,
    feedback: Sequence[str] = (),
) -> str:
    """Assemble the user prompt for one generation request.

    The output depends only on the arguments; feedback lines are included only
    when ``is_retry`` is true.
    """

    sections: List[str] = []
    prefix = (config.custom_prompt or "").strip()
    if prefix:
        sections.append(prefix)
    sections.append(_base_instruction(config))
    sections.append("Context:\n" + "\n".join(_context_lines(asset, existing_alt)))

    if is_retry:
        notes = [line for line in (sanitize_line(item) for item in feedback) if line]
        if notes:
            sections.append(
                "A reviewer flagged the previous attempt. Address this feedback:\n"
                + "\n".join(f"- {note}" for note in notes)
            )
        else:
            sections.append("The previous attempt was rejected. Write a clearer, more specific description.")

    return "\n\n".join(sections)


def build_review_prompt(
    alt_text: str,
    asset: ImageAsset,
    *,
    include_image: bool,
) -> str:
    """Ask the reviewer for a strict JSON verdict on ``alt_text``."""

    context = _context_lines(asset, None)
    image_note = (
        "The image is attached."
        if include_image
        else "The image is not attached; judge from the context only."
    )
    return "\n".join(
        [
            "Grade the following ALT text for accessibility and accuracy.",
            image_note,
            *context,
            f"ALT text: {sanitize_line(alt_text)}",
            "",
            "Respond with a single JSON object and nothing else:",
            '{"score": <integer 0-100>, "verdict": "excellent|good|needs review|critical",'
            ' "summary": "<one sentence>", "issues": ["<short issue>", ...]}',
        ]
    )


def feedback_lines(
    summary: Optional[str], issues: Iterable[str], previous_text: str
) -> List[str]:
    """Return the reviewer feedback handed to a retry."""

    lines: List[str] = []
    seen = set()
    for item in (summary, *issues):
        text = (item or "").strip()
        if text and text.casefold() not in seen:
            seen.add(text.casefold())
            lines.append(text)
    lines.append(f"Previous attempt produced: {previous_text}")
    return lines


__all__ = [
    "REVIEW_SYSTEM_PROMPT",
    "SYSTEM_PROMPT",
    "build_prompt",
    "build_review_prompt",
    "clean_alt_text",
    "feedback_lines",
    "sanitize_line",
]
