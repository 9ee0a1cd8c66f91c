# SPDX-License-Identifier: MIT
"""Retry helpers for prompt discovery calls.

This module centralises the backoff table lookup and the vocabulary used to
recognise transient upstream failures so the invoker and the orchestrator
share consistent logic.
"""

from __future__ import annotations

import os
import re
from typing import Sequence

from constants import RETRY_DELAYS_MS

# -- Transient failure detection --------------------------------------------------

_BASE_INDICATORS: tuple[str, ...] = (
    r"\b413\b",
    r"\b502\b",
    r"\b503\b",
    r"\b504\b",
    r"bad gateway",
    r"service unavailable",
    r"gateway time-?out",
    r"payload too large",
    r"request entity too large",
    r"context[_ ]length",
    r"context window",
    r"maximum context",
    r"token limit",
    r"too many tokens",
    r"max(imum)?[_ ]tokens",
    r"time-?out",
    r"timed out",
)


def _load_transient_indicators() -> tuple[re.Pattern[str], ...]:
    """Construct the indicator set, honouring ``PD_ADDITIONAL_TRANSIENT_INDICATORS``."""
    sources = list(_BASE_INDICATORS)
    extra = os.getenv("PD_ADDITIONAL_TRANSIENT_INDICATORS")
    if extra:
        sources.extend(re.escape(item.strip()) for item in extra.split(",") if item.strip())
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


TRANSIENT_INDICATORS: tuple[re.Pattern[str], ...] = _load_transient_indicators()


def extend_transient_indicators(*phrases: str) -> None:
    """Extend ``TRANSIENT_INDICATORS`` with additional literal phrases."""
    global TRANSIENT_INDICATORS
    TRANSIENT_INDICATORS = TRANSIENT_INDICATORS + tuple(
        re.compile(re.escape(phrase), re.IGNORECASE) for phrase in phrases
    )


def is_transient_failure(message: str) -> bool:
    """Return ``True`` when ``message`` names a failure worth retrying smaller."""
    return any(pattern.search(message) for pattern in TRANSIENT_INDICATORS)


# -- Backoff table ----------------------------------------------------------------


def retry_delay_ms(retry_count: int, table: Sequence[int] = RETRY_DELAYS_MS) -> int:
    """Return the delay before retry number ``retry_count + 1``.

    Counts beyond the table reuse its last entry.
    """
    if not table:
        raise ValueError("retry delay table must not be empty")
    index = min(max(retry_count, 0), len(table) - 1)
    return table[index]


__all__ = [
    "TRANSIENT_INDICATORS",
    "extend_transient_indicators",
    "is_transient_failure",
    "retry_delay_ms",
]
