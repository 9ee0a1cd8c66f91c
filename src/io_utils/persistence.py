# SPDX-License-Identifier: MIT
"""Line oriented file helpers used by the transcript store."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Tuple

import logfire


def read_lines(path: Path, *, skip_blank: bool = True) -> List[Tuple[int, str]]:
    """Return ``(line_no, text)`` pairs for ``path``.

    Line numbers start at one and are preserved when blank lines are skipped,
    so callers can point at the offending line in error messages. A missing
    file reads as empty.
    """
    with logfire.span("fs.read_lines", attributes={"path": str(path)}):
        if not path.exists():
            logfire.debug("Transcript file missing", path=str(path))
            return []
        numbered = enumerate(path.read_text(encoding="utf-8").splitlines(), start=1)
        result = [(no, text) for no, text in numbered if text.strip() or not skip_blank]
        logfire.debug("Read lines", path=str(path), count=len(result))
        return result


def atomic_write(path: Path, lines: Iterable[str]) -> int:
    """Replace ``path`` with ``lines`` and return how many were written.

    Readers never observe a half written file: content is staged in a
    ``.tmp`` sibling, synced, then swapped in with :func:`os.replace`.
    """
    staging = path.with_name(f"{path.name}.tmp")
    with logfire.span("fs.atomic_write", attributes={"path": str(path)}):
        staging.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        with staging.open("w", encoding="utf-8") as handle:
            for written, line in enumerate(lines, start=1):
                handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(staging, path)
        logfire.debug("Atomic write complete", path=str(path), lines=written)
        return written


__all__ = ["atomic_write", "read_lines"]
