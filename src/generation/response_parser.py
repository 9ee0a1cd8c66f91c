# SPDX-License-Identifier: MIT
"""Parse delimited prompt suggestions out of raw model text.

The model is asked to answer in a plain text block format::

    ---PROMPT---
    TEXT: 1girl, forest, moonlight
    INSERT_AFTER: through the forest
    INSERT_BEFORE: under the pale
    REASONING: Key visual scene
    ---END---

Any number of ``---PROMPT---`` blocks may appear. A response made only of the
end marker means the model found nothing worth illustrating.
"""

from __future__ import annotations

import re

import logfire

from constants import PROMPT_END_MARKER, PROMPT_START_MARKER
from models import (
    GenerationAttemptResult,
    GenerationErrorType,
    GenerationStatus,
    PromptSuggestion,
)

_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n?(?P<body>.*?)\n?```$", re.DOTALL)

_REQUIRED_FIELDS = (
    ("text", "TEXT"),
    ("insert_after", "INSERT_AFTER"),
    ("insert_before", "INSERT_BEFORE"),
)


def _field_pattern(label: str) -> re.Pattern[str]:
    return re.compile(rf"^[ \t]*{label}:[ \t]*(.*)$", re.MULTILINE)


_FIELD_PATTERNS = {label: _field_pattern(label) for _, label in _REQUIRED_FIELDS}
_REASONING = _field_pattern("REASONING")


def strip_code_fence(raw: str) -> str:
    """Return ``raw`` trimmed and without a single enclosing code fence."""
    cleaned = raw.strip()
    match = _FENCE.match(cleaned)
    if match:
        return match.group("body").strip()
    return cleaned


def _parse_block(block: str) -> PromptSuggestion | None:
    """Return the suggestion described by ``block`` or ``None`` when invalid."""
    content = block.split(PROMPT_END_MARKER, 1)[0]
    values: dict[str, str] = {}
    missing: list[str] = []
    empty: list[str] = []
    for key, label in _REQUIRED_FIELDS:
        match = _FIELD_PATTERNS[label].search(content)
        if match is None:
            missing.append(label)
            continue
        value = match.group(1).strip()
        if not value:
            empty.append(label)
        values[key] = value
    if missing or empty:
        logfire.warning(
            "Skipping prompt block",
            missing_fields=missing,
            empty_fields=empty,
            preview=content[:200],
        )
        return None
    reasoning_match = _REASONING.search(content)
    reasoning = reasoning_match.group(1).strip() if reasoning_match else None
    return PromptSuggestion(reasoning=reasoning or None, **values)


def parse_suggestions(raw: str) -> list[PromptSuggestion]:
    """Return every well-formed suggestion in ``raw`` in order.

    Malformed blocks are dropped individually; they never fail the batch.
    """
    cleaned = strip_code_fence(raw)
    # Text before the first start marker is preamble, not a suggestion.
    blocks = cleaned.split(PROMPT_START_MARKER)[1:]
    suggestions = [s for s in (_parse_block(b) for b in blocks) if s is not None]
    logfire.debug(
        "Parsed prompt suggestions", blocks=len(blocks), valid=len(suggestions)
    )
    return suggestions


def classify_response(raw: str, max_suggestions: int) -> GenerationAttemptResult:
    """Classify ``raw`` model text as success, no-prompts or invalid format."""
    suggestions = parse_suggestions(raw)
    if not suggestions:
        cleaned = raw.strip()
        if PROMPT_END_MARKER in cleaned and PROMPT_START_MARKER not in cleaned:
            logfire.info("Model returned no prompts")
            return GenerationAttemptResult(
                status=GenerationStatus.NO_PROMPTS, raw_response=raw
            )
        logfire.warning("Model returned no valid suggestions")
        return GenerationAttemptResult(
            status=GenerationStatus.ERROR,
            error_type=GenerationErrorType.INVALID_FORMAT,
            error_message="LLM response did not contain any valid prompt blocks",
            raw_response=raw,
        )
    if len(suggestions) > max_suggestions:
        logfire.info(
            "Limiting prompt suggestions",
            received=len(suggestions),
            limit=max_suggestions,
        )
        suggestions = suggestions[:max_suggestions]
    return GenerationAttemptResult(
        status=GenerationStatus.SUCCESS, suggestions=suggestions, raw_response=raw
    )


__all__ = ["classify_response", "parse_suggestions", "strip_code_fence"]
