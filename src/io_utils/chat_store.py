# SPDX-License-Identifier: MIT
"""File-backed conversation used by the command-line tool.

Transcripts are JSON Lines, one turn per line with ``name``, ``is_user`` and
``text`` keys. A turn's message identifier is its zero-based line index.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence

import logfire
from pydantic import ValidationError
from pydantic_core import to_json

from models import ChatTurn
from utils import ErrorHandler, LoggingErrorHandler

from .persistence import atomic_write, read_lines


class JsonlChatStore:
    """In-memory transcript with debounced, atomic write-back.

    :meth:`save` only arms a timer; the write happens once ``debounce_seconds``
    pass without another call. :meth:`flush` writes any pending change
    immediately.
    """

    def __init__(
        self,
        path: Path,
        turns: Sequence[ChatTurn] | None = None,
        *,
        debounce_seconds: float = 0.5,
        error_handler: ErrorHandler | None = None,
    ) -> None:
        self.path = Path(path)
        self.turns: list[ChatTurn] = list(turns or [])
        self.debounce_seconds = debounce_seconds
        self.write_count = 0
        self._dirty = False
        self._pending: asyncio.Task[None] | None = None
        self._error_handler = error_handler or LoggingErrorHandler()

    @classmethod
    def load(cls, path: Path | str, **kwargs: object) -> "JsonlChatStore":
        """Read a transcript from ``path``.

        Raises:
            RuntimeError: If a line is not a valid chat turn.
        """
        path = Path(path)
        turns: list[ChatTurn] = []
        for line_no, line in read_lines(path):
            try:
                turns.append(ChatTurn.model_validate_json(line))
            except ValidationError as exc:
                raise RuntimeError(f"Invalid chat turn at {path}:{line_no}: {exc}") from exc
        logfire.info("Loaded chat transcript", path=str(path), turns=len(turns))
        return cls(path, turns, **kwargs)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self.turns)

    def get_message(self, message_id: int) -> ChatTurn | None:
        """Return turn ``message_id`` or ``None`` when out of range."""
        if 0 <= message_id < len(self.turns):
            return self.turns[message_id]
        return None

    def history_before(self, message_id: int, limit: int) -> list[ChatTurn]:
        """Return up to ``limit`` turns preceding ``message_id``, oldest first."""
        if limit <= 0:
            return []
        end = max(0, min(message_id, len(self.turns)))
        return self.turns[max(0, end - limit) : end]

    def update_message_text(self, message_id: int, text: str) -> None:
        """Replace the text of turn ``message_id``.

        Raises:
            IndexError: If ``message_id`` does not exist.
        """
        turn = self.get_message(message_id)
        if turn is None:
            raise IndexError(f"No message with id {message_id}")
        self.turns[message_id] = turn.model_copy(update={"text": text})
        self._dirty = True

    async def save(self) -> None:
        """Schedule a write after the debounce delay and return immediately."""
        self._dirty = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.ensure_future(self._delayed_write())

    async def _delayed_write(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._pending = None
        try:
            self._write()
        except OSError as exc:
            self._error_handler.handle(f"Failed to save transcript {self.path}", exc)

    def _write(self) -> None:
        if not self._dirty:
            return
        lines = (to_json(turn.model_dump()).decode("utf-8") for turn in self.turns)
        atomic_write(self.path, lines)
        self._dirty = False
        self.write_count += 1

    async def flush(self) -> None:
        """Write pending changes now, cancelling any armed timer."""
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()
            try:
                await pending
            except asyncio.CancelledError:
                pass
        self._write()


__all__ = ["JsonlChatStore"]
