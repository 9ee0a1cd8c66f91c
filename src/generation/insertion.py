# SPDX-License-Identifier: MIT
"""Embed prompt tags into message text using suggestion anchors.

Anchors are substrings quoted by the model, not offsets, so matching is
tolerant: an exact search is tried first, then a search that ignores case and
collapses whitespace runs.
"""

from __future__ import annotations

import re
from typing import Sequence

import logfire

from constants import DEFAULT_PROMPT_TAG_TEMPLATE
from generation.markers import build_prompt_tag
from models import InsertionResult, PromptSuggestion


def _loose_pattern(anchor: str) -> re.Pattern[str] | None:
    words = anchor.split()
    if not words:
        return None
    return re.compile(r"\s+".join(re.escape(w) for w in words), re.IGNORECASE)


def find_anchor(text: str, anchor: str, start: int = 0) -> tuple[int, int] | None:
    """Return the ``(start, end)`` span of ``anchor`` in ``text`` or ``None``."""
    index = text.find(anchor, start)
    if index >= 0:
        return index, index + len(anchor)
    pattern = _loose_pattern(anchor)
    if pattern is None:
        return None
    match = pattern.search(text, start)
    return (match.start(), match.end()) if match else None


class AnchorPromptInserter:
    """Insert one tag per suggestion between its two anchors.

    The tag goes right after ``insert_after``; when only ``insert_before`` can
    be found the tag goes right before it. Suggestions matching neither anchor
    are appended to the end of the text when ``append_unmatched`` is set.
    """

    def __init__(
        self,
        tag_template: str = DEFAULT_PROMPT_TAG_TEMPLATE,
        *,
        append_unmatched: bool = True,
    ) -> None:
        self.tag_template = tag_template
        self.append_unmatched = append_unmatched

    def _insertion_point(self, text: str, suggestion: PromptSuggestion) -> int | None:
        after = find_anchor(text, suggestion.insert_after)
        if after is not None:
            return after[1]
        before = find_anchor(text, suggestion.insert_before)
        if before is not None:
            return before[0]
        return None

    def insert(
        self, text: str, suggestions: Sequence[PromptSuggestion]
    ) -> InsertionResult:
        """Return ``text`` with a tag embedded for each suggestion."""
        updated = text
        inserted = 0
        failed: list[PromptSuggestion] = []
        for suggestion in suggestions:
            point = self._insertion_point(updated, suggestion)
            if point is None:
                failed.append(suggestion)
                continue
            tag = build_prompt_tag(suggestion.text, self.tag_template)
            updated = f"{updated[:point]} {tag}{updated[point:]}"
            inserted += 1

        if failed and self.append_unmatched:
            logfire.warning(
                "Appending prompts that could not be anchored", count=len(failed)
            )
            for suggestion in failed:
                updated += f" {build_prompt_tag(suggestion.text, self.tag_template)}"
            inserted += len(failed)
            failed = []

        return InsertionResult(updated_text=updated, inserted_count=inserted, failed=failed)


__all__ = ["AnchorPromptInserter", "find_anchor"]
