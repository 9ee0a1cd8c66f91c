# SPDX-License-Identifier: MIT
"""Prompt construction for prompt discovery calls.

The system instruction comes from a template with two guideline placeholders.
The user prompt pairs a bounded window of earlier turns with the message being
illustrated. Bounding only ever applies to the earlier turns; the current
message is always sent in full.
"""

from __future__ import annotations

from typing import Sequence

from generation.markers import strip_markup
from models import ChatTurn, GenerationOptions

CONTEXT_HEADER = "=== CONTEXT ==="
CURRENT_MESSAGE_HEADER = "=== CURRENT MESSAGE ==="
NO_CONTEXT_PLACEHOLDER = "(No previous messages)"
FREQUENCY_PLACEHOLDER = "{{FREQUENCY_GUIDELINES}}"
WRITING_PLACEHOLDER = "{{PROMPT_WRITING_GUIDELINES}}"
ELLIPSIS = "…"
TURN_SEPARATOR = "\n\n"


def build_system_prompt(template: str, options: GenerationOptions) -> str:
    """Substitute the configured guideline text into ``template``."""
    return template.replace(FREQUENCY_PLACEHOLDER, options.frequency_guidelines).replace(
        WRITING_PLACEHOLDER, options.prompt_writing_guidelines
    )


def truncate(text: str, limit: int) -> str:
    """Return ``text`` cut to ``limit`` characters including an ellipsis."""
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return ELLIPSIS[:limit]
    return text[: limit - len(ELLIPSIS)].rstrip() + ELLIPSIS


def format_turn(turn: ChatTurn, options: GenerationOptions) -> str:
    """Render ``turn`` as ``name: text`` with markup removed and length capped."""
    name = turn.name or ("User" if turn.is_user else "Assistant")
    cleaned = strip_markup(turn.text, options.prompt_detection_patterns)
    return truncate(f"{name}: {cleaned}", options.context_turn_char_budget)


def bound_context(history: Sequence[ChatTurn], options: GenerationOptions) -> list[str]:
    """Return formatted turns that fit the aggregate budget, oldest first.

    Turns are taken from the most recent backwards until the next one would
    overflow ``context_total_char_budget``. The most recent turn is always kept,
    truncated when it alone exceeds the budget.
    """
    budget = options.context_total_char_budget
    selected: list[str] = []
    used = 0
    for turn in reversed(history):
        rendered = format_turn(turn, options)
        cost = len(rendered) + (len(TURN_SEPARATOR) if selected else 0)
        if used + cost > budget:
            if not selected:
                selected.append(truncate(rendered, budget))
            break
        selected.append(rendered)
        used += cost
    selected.reverse()
    return selected


def build_user_prompt(message_text: str, window: Sequence[str]) -> str:
    """Join ``window`` and ``message_text`` under the context headers."""
    context_text = TURN_SEPARATOR.join(window) if window else NO_CONTEXT_PLACEHOLDER
    return (
        f"{CONTEXT_HEADER}\n{context_text}\n\n"
        f"{CURRENT_MESSAGE_HEADER}\n{message_text}"
    )


__all__ = [
    "bound_context",
    "build_system_prompt",
    "build_user_prompt",
    "format_turn",
    "truncate",
]
