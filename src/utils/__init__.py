"""Utility interfaces and implementations."""

from .error_handler import ErrorHandler, LoggingErrorHandler
from .prompt_loader import FilePromptLoader, PromptLoader
from .time_utils import (
    estimate_from_snapshot,
    estimate_remaining_queue_ms,
    format_duration_clock,
)

__all__ = [
    "PromptLoader",
    "FilePromptLoader",
    "ErrorHandler",
    "LoggingErrorHandler",
    "estimate_from_snapshot",
    "estimate_remaining_queue_ms",
    "format_duration_clock",
]
