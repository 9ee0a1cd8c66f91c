# SPDX-License-Identifier: MIT
"""System prompt template loading."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

import logfire


class PromptLoader(ABC):
    """Interface for retrieving prompt templates by name."""

    @abstractmethod
    def load(self, name: str) -> str:
        """Return the template text for ``name``.

        Args:
            name: Template identifier without the ``.md`` extension.
        """

    @abstractmethod
    def clear_cache(self) -> None:
        """Forget any cached template text."""


class FilePromptLoader(PromptLoader):
    """Load markdown templates from ``base_dir`` and memoise them."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)
        self._cache: dict[str, str] = {}

    def path_for(self, name: str) -> Path:
        """Return the file backing template ``name``."""
        return self._base_dir / (name if name.endswith(".md") else f"{name}.md")

    def load(self, name: str) -> str:
        """Read template ``name`` from disk.

        Returns:
            Template text with surrounding whitespace removed.

        Raises:
            FileNotFoundError: If the template does not exist.
        """
        cached = self._cache.get(name)
        if cached is not None:
            return cached
        with logfire.span("prompt_loader.load", attributes={"name": name}):
            text = self.path_for(name).read_text(encoding="utf-8").strip()
        self._cache[name] = text
        return text

    def clear_cache(self) -> None:
        """Reset memoised template text."""
        self._cache.clear()
