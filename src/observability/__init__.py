"""Telemetry and monitoring helpers for prompt discovery.

Exports:
    init_logfire: Configure Pydantic Logfire instrumentation.
    record_outcome: Record the outcome of an orchestrated attempt.
    record_strategy: Record which fallback strategy answered.
    print_summary: Output a summary of collected metrics.
    reset: Clear stored metrics.
"""

from .monitoring import init_logfire
from .telemetry import (
    print_summary,
    record_outcome,
    record_strategy,
    reset,
)

__all__ = [
    "init_logfire",
    "record_outcome",
    "record_strategy",
    "print_summary",
    "reset",
]
