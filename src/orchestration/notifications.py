# SPDX-License-Identifier: MIT
"""Default notification sink and status text for retry state.

Hosts with their own UI supply a :class:`~orchestration.protocols.Notifier`;
:class:`LogfireNotifier` renders the built-in English templates and records
them through logfire, which is what the command-line tool uses.
"""

from __future__ import annotations

import math
import time
from collections import deque
from typing import Any

import logfire

from models import RetryState, RetryStatus

MESSAGES: dict[str, str] = {
    "prompt_retrying": (
        "Prompt generation failed; retrying in {seconds}s"
        " (attempt {attempt}/{total})"
    ),
    "prompt_retry_failed": "Prompt generation failed after all retries",
    "prompt_retry_cancelled": "Prompt generation retries cancelled",
}

LAST_ERROR_MAX_CHARS = 160

HISTORY_MAX_ENTRIES = 100


def render_message(key: str, **params: Any) -> str:
    """Return the template for ``key`` filled with ``params``."""
    template = MESSAGES.get(key)
    if template is None:
        return key
    try:
        return template.format(**params)
    except KeyError:
        return template


class LogfireNotifier:
    """Notifier that logs rendered messages and keeps a short history."""

    def __init__(self, max_history: int = HISTORY_MAX_ENTRIES) -> None:
        self.history: deque[tuple[str, str]] = deque(maxlen=max_history)

    def info(self, key: str, **params: Any) -> None:
        """Record an informational notification."""
        text = render_message(key, **params)
        self.history.append(("info", text))
        logfire.info(text, key=key, **params)

    def warning(self, key: str, **params: Any) -> None:
        """Record a warning notification."""
        text = render_message(key, **params)
        self.history.append(("warning", text))
        logfire.warning(text, key=key, **params)


def describe_retry_state(state: RetryState, now_ms: float | None = None) -> str:
    """Return a one-line status for ``state`` suitable for a status bar."""
    now = time.time() * 1000 if now_ms is None else now_ms
    if state.status is RetryStatus.SCHEDULED and state.next_retry_at is not None:
        seconds = max(0, math.floor((state.next_retry_at - now) / 1000 + 0.5))
        line = (
            f"Retrying prompt generation in {seconds}s"
            f" (attempt {state.retry_count + 1}/{state.max_retries})"
        )
    elif state.status is RetryStatus.RUNNING:
        line = "Generating prompts..."
    elif state.status is RetryStatus.FAILED:
        line = "Prompt generation failed"
    else:
        line = "Prompt generation cancelled"

    show_error = state.status in (RetryStatus.SCHEDULED, RetryStatus.FAILED)
    if show_error and (state.last_error_type or state.last_error_message):
        detail = (
            f"{state.last_error_type or 'unknown'}: {state.last_error_message or ''}"
        ).strip()
        if len(detail) > LAST_ERROR_MAX_CHARS:
            detail = detail[: LAST_ERROR_MAX_CHARS - 3] + "..."
        line = f"{line} | last error: {detail}"
    return line


__all__ = [
    "LAST_ERROR_MAX_CHARS",
    "LogfireNotifier",
    "MESSAGES",
    "describe_retry_state",
    "render_message",
]
