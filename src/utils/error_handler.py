# SPDX-License-Identifier: MIT
"""Error reporting for failures that must not interrupt prompt discovery.

Collaborator failures such as a broken state listener or an image session that
refuses to start are reported here instead of propagating into the retry loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import logfire


class ErrorHandler(ABC):
    """Interface for reporting errors.

    Implementations must not raise and should emit concise diagnostics.
    """

    @abstractmethod
    def handle(self, message: str, exc: Exception | None = None) -> None:
        """Record ``message`` with optional ``exc`` context."""


class LoggingErrorHandler(ErrorHandler):
    """Error handler that logs via ``logfire``."""

    def handle(self, message: str, exc: Exception | None = None) -> None:
        """Log ``message`` at error level.

        Args:
            message: Description of the failure.
            exc: Exception providing additional context, if any.
        """
        if exc is None:
            logfire.error(message)
            return
        logfire.error(
            "{message}: {error}",
            message=message,
            error=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
        )
