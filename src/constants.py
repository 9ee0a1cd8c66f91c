"""Project-wide constants and defaults.

This module centralises small constants that are imported across the
application. Keep this file minimal and free of side effects.
"""

from __future__ import annotations

# Backoff applied one entry per retry; the table length is the retry budget.
RETRY_DELAYS_MS: tuple[int, ...] = (5000, 10000, 20000)

PROMPT_START_MARKER = "---PROMPT---"
PROMPT_END_MARKER = "---END---"

DEFAULT_CONTEXT_MESSAGE_COUNT = 10
DEFAULT_CONTEXT_TURN_CHAR_BUDGET = 4000
DEFAULT_CONTEXT_TOTAL_CHAR_BUDGET = 20000
DEFAULT_MAX_PROMPTS_PER_MESSAGE = 5

DEFAULT_PROMPT_TAG_TEMPLATE = '<!--img-prompt="{PROMPT}"-->'
DEFAULT_PROMPT_DETECTION_PATTERNS: tuple[str, ...] = (DEFAULT_PROMPT_TAG_TEMPLATE,)

SYSTEM_PROMPT_TEMPLATE_NAME = "prompt_generation"

__all__ = [
    "RETRY_DELAYS_MS",
    "PROMPT_START_MARKER",
    "PROMPT_END_MARKER",
    "DEFAULT_CONTEXT_MESSAGE_COUNT",
    "DEFAULT_CONTEXT_TURN_CHAR_BUDGET",
    "DEFAULT_CONTEXT_TOTAL_CHAR_BUDGET",
    "DEFAULT_MAX_PROMPTS_PER_MESSAGE",
    "DEFAULT_PROMPT_TAG_TEMPLATE",
    "DEFAULT_PROMPT_DETECTION_PATTERNS",
    "SYSTEM_PROMPT_TEMPLATE_NAME",
]
