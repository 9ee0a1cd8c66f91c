# SPDX-License-Identifier: MIT
"""Aggregate prompt discovery metrics for end-of-run reporting."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

import logfire

ATTEMPTS_TOTAL = logfire.metric_counter("prompt_discovery_attempts")
"""Counter for attempts that reached an outcome."""

RETRIES_SCHEDULED = logfire.metric_counter("prompt_discovery_retries_scheduled")
"""Counter for retries placed on a timer."""

CONTEXT_DROPS = logfire.metric_counter("prompt_discovery_context_drops")
"""Counter for chains repeated without conversation history."""


@dataclass
class RunMetrics:
    """Counts collected during a run."""

    outcomes: Counter[str] = field(default_factory=Counter)
    strategies: Counter[str] = field(default_factory=Counter)
    retries_scheduled: int = 0
    context_drops: int = 0


_metrics = RunMetrics()


def record_outcome(outcome: str) -> None:
    """Record the outcome of one orchestrated attempt."""

    _metrics.outcomes[outcome] += 1
    ATTEMPTS_TOTAL.add(1, {"outcome": outcome})


def record_strategy(name: str) -> None:
    """Record which fallback strategy produced an answer."""

    _metrics.strategies[name] += 1


def record_retry_scheduled() -> None:
    """Track a retry being scheduled."""

    _metrics.retries_scheduled += 1
    RETRIES_SCHEDULED.add(1)


def record_context_drop() -> None:
    """Track a chain retried without conversation history."""

    _metrics.context_drops += 1
    CONTEXT_DROPS.add(1)


def snapshot() -> RunMetrics:
    """Return a copy of the collected metrics."""

    return RunMetrics(
        outcomes=Counter(_metrics.outcomes),
        strategies=Counter(_metrics.strategies),
        retries_scheduled=_metrics.retries_scheduled,
        context_drops=_metrics.context_drops,
    )


def reset() -> None:
    """Clear all recorded metrics."""

    global _metrics
    _metrics = RunMetrics()


def print_summary() -> None:
    """Write a summary of collected metrics to ``stdout``."""

    if not _metrics.outcomes and not _metrics.strategies:
        return
    outcomes = " ".join(f"{k}={v}" for k, v in sorted(_metrics.outcomes.items()))
    strategies = " ".join(f"{k}={v}" for k, v in sorted(_metrics.strategies.items()))
    print(f"Outcomes: {outcomes or 'none'}")
    print(f"Strategies: {strategies or 'none'}")
    print(
        f"Totals: retries_scheduled={_metrics.retries_scheduled} "
        f"context_drops={_metrics.context_drops}"
    )


__all__ = [
    "RunMetrics",
    "print_summary",
    "record_context_drop",
    "record_outcome",
    "record_retry_scheduled",
    "record_strategy",
    "reset",
    "snapshot",
]
