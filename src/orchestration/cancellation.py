# SPDX-License-Identifier: MIT
"""Cooperative cancellation token threaded through retry attempts."""

from __future__ import annotations


class CancellationToken:
    """One-shot flag polled by an attempt at its checkpoints.

    Cancelling never interrupts running code; the attempt notices at its next
    checkpoint and returns without further side effects.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Trigger the token. Repeated calls are harmless."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"


__all__ = ["CancellationToken"]
