# SPDX-License-Identifier: MIT
"""Observer registry for per-message retry state changes."""

from __future__ import annotations

from typing import Callable

from utils import ErrorHandler, LoggingErrorHandler

StateListener = Callable[[int], None]


class StateChangeRegistry:
    """Deliver "state changed for message X" to every subscriber.

    Delivery is fire-and-forget: a listener that raises is reported through the
    error handler and the remaining listeners still run.
    """

    def __init__(self, error_handler: ErrorHandler | None = None) -> None:
        self._listeners: list[StateListener] = []
        self._error_handler = (
            error_handler if error_handler is not None else LoggingErrorHandler()
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, message_id: int) -> None:
        """Notify listeners that ``message_id`` changed."""
        for listener in list(self._listeners):
            try:
                listener(message_id)
            except Exception as exc:  # pylint: disable=broad-except
                self._error_handler.handle(
                    f"State listener failed for message {message_id}", exc
                )

    def __len__(self) -> int:
        return len(self._listeners)


__all__ = ["StateChangeRegistry", "StateListener"]
