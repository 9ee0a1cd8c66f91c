# SPDX-License-Identifier: MIT
"""Collaborators consumed by the retry orchestrator.

The orchestrator owns no chat storage, image queue or user interface. Hosts
plug those in by implementing the protocols below.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from models import ChatTurn, InsertionResult, PromptSuggestion


class ChatContext(Protocol):
    """Access to the active conversation.

    Message identifiers are only meaningful within one conversation.
    """

    def get_message(self, message_id: int) -> ChatTurn | None:
        """Return the message with ``message_id`` or ``None`` when absent."""
        ...

    def history_before(self, message_id: int, limit: int) -> Sequence[ChatTurn]:
        """Return up to ``limit`` turns preceding ``message_id``, oldest first."""
        ...

    def update_message_text(self, message_id: int, text: str) -> None:
        """Replace the text of ``message_id``."""
        ...

    async def save(self) -> None:
        """Trigger a debounced save; must return without waiting for I/O."""
        ...


class SessionStarter(Protocol):
    """Entry point to the downstream image generation queue."""

    def has_session(self, message_id: int) -> bool:
        """Return ``True`` when image work already exists for ``message_id``."""
        ...

    async def start_session(self, message_id: int) -> None:
        """Begin image generation for the prompts embedded in ``message_id``."""
        ...


class PromptInserter(Protocol):
    """Embeds prompt tags into message text using suggestion anchors."""

    def insert(
        self, text: str, suggestions: Sequence[PromptSuggestion]
    ) -> InsertionResult:
        """Return ``text`` with tags for ``suggestions`` inserted."""
        ...


class Notifier(Protocol):
    """User-facing notification sink.

    ``key`` names the message; ``params`` carry values such as the attempt
    number or seconds until the next retry. Rendering and translation belong to
    the implementation.
    """

    def info(self, key: str, **params: Any) -> None: ...

    def warning(self, key: str, **params: Any) -> None: ...


__all__ = [
    "ChatContext",
    "InsertionResult",
    "Notifier",
    "PromptInserter",
    "SessionStarter",
]
