# SPDX-License-Identifier: MIT
"""Prompt tag detection and construction.

Prompt tags are embedded in message text using templates such as
``<!--img-prompt="{PROMPT}"-->``. A message containing any tag matching one of
the configured templates is considered to already carry prompts.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Sequence

from constants import DEFAULT_PROMPT_DETECTION_PATTERNS, DEFAULT_PROMPT_TAG_TEMPLATE

_IMAGE_PATTERNS = (
    re.compile(r"<img\b[^>]*>", re.IGNORECASE),
    re.compile(r"!\[[^\]]*\]\([^)]*\)"),
)
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


@lru_cache(maxsize=64)
def _compile_pattern(template: str) -> re.Pattern[str]:
    head, _, tail = template.partition("{PROMPT}")
    return re.compile(re.escape(head) + r"(.*?)" + re.escape(tail), re.DOTALL)


def _patterns(templates: Sequence[str] | None) -> list[re.Pattern[str]]:
    chosen = templates if templates else DEFAULT_PROMPT_DETECTION_PATTERNS
    return [_compile_pattern(t) for t in chosen if "{PROMPT}" in t]


def has_image_prompts(text: str, templates: Sequence[str] | None = None) -> bool:
    """Return ``True`` when ``text`` contains a prompt tag."""
    return any(pattern.search(text) for pattern in _patterns(templates))


def extract_image_prompts(
    text: str, templates: Sequence[str] | None = None
) -> list[str]:
    """Return prompt strings embedded in ``text`` in order of appearance."""
    found: list[tuple[int, str]] = []
    for pattern in _patterns(templates):
        found.extend((m.start(), m.group(1)) for m in pattern.finditer(text))
    return [prompt for _, prompt in sorted(found)]


def escape_prompt(prompt: str) -> str:
    """Escape ``prompt`` so it cannot terminate the surrounding tag."""
    return (
        prompt.replace("&", "&amp;")
        .replace('"', "&quot;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("--", "&#45;&#45;")
    )


def build_prompt_tag(prompt: str, template: str | None = None) -> str:
    """Render ``prompt`` into ``template``, falling back to the default tag."""
    chosen = template if template and "{PROMPT}" in template else None
    return (chosen or DEFAULT_PROMPT_TAG_TEMPLATE).replace(
        "{PROMPT}", escape_prompt(prompt)
    )


def strip_markup(text: str, templates: Sequence[str] | None = None) -> str:
    """Remove prompt tags and embedded images, collapsing blank line runs."""
    for pattern in _patterns(templates):
        text = pattern.sub("", text)
    for pattern in _IMAGE_PATTERNS:
        text = pattern.sub("", text)
    return _EXCESS_BLANK_LINES.sub("\n\n", text).strip()


__all__ = [
    "build_prompt_tag",
    "escape_prompt",
    "extract_image_prompts",
    "has_image_prompts",
    "strip_markup",
]
