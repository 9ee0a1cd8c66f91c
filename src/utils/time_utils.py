# SPDX-License-Identifier: MIT
"""Queue completion estimates and clock formatting for progress displays.

Both helpers are pure: presentation code samples the image queue, builds a
:class:`~models.QueueTimingSnapshot` (or passes the figures directly) and
renders the result with :func:`format_duration_clock`.
"""

from __future__ import annotations

import math

from models import QueueTimingSnapshot


def _non_negative(value: float) -> float:
    return max(0.0, value)


def format_duration_clock(ms: float) -> str:
    """Return ``ms`` as ``M:SS`` or ``H:MM:SS`` once it reaches an hour.

    Negative input clamps to zero and partial seconds round up, so ``1`` ms
    renders as ``0:01``.
    """
    if not math.isfinite(ms):
        ms = 0
    total_seconds = max(0, math.ceil(ms / 1000))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def estimate_remaining_queue_ms(
    pending_count: float,
    cooldown_remaining_ms: float,
    average_generation_duration_ms: float | None,
    min_generation_interval_ms: float,
    max_concurrent: float = 1,
) -> float | None:
    """Estimate how long the pending queue needs to drain.

    Args:
        pending_count: Items queued or generating.
        cooldown_remaining_ms: Time left before the next item may start.
        average_generation_duration_ms: Historical mean duration per item, or
            ``None`` when no history exists.
        min_generation_interval_ms: Enforced gap between consecutive items.
        max_concurrent: Number of items the queue runs at once.

    Returns:
        Estimated milliseconds, ``0`` when nothing is pending, or ``None`` when
        the average duration is unknown.
    """
    pending = max(0, math.floor(pending_count)) if math.isfinite(pending_count) else 0
    if pending == 0:
        return 0

    average = average_generation_duration_ms
    if average is None or not math.isfinite(average) or average <= 0:
        return None

    interval = _non_negative(min_generation_interval_ms)
    cooldown = _non_negative(cooldown_remaining_ms)
    concurrency = (
        max(1, math.floor(max_concurrent)) if math.isfinite(max_concurrent) else 1
    )

    # A configured interval forces one-at-a-time throughput.
    if interval > 0 or concurrency <= 1:
        gaps = (pending - 1) * interval
        return cooldown + pending * average + gaps

    waves = math.ceil(pending / concurrency)
    return waves * average


def estimate_from_snapshot(snapshot: QueueTimingSnapshot) -> float | None:
    """Return :func:`estimate_remaining_queue_ms` for ``snapshot``."""
    return estimate_remaining_queue_ms(
        snapshot.pending_count,
        snapshot.cooldown_remaining_ms,
        snapshot.average_generation_duration_ms,
        snapshot.min_generation_interval_ms,
        snapshot.max_concurrent,
    )


__all__ = [
    "estimate_from_snapshot",
    "estimate_remaining_queue_ms",
    "format_duration_clock",
]
