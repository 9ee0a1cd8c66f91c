# SPDX-License-Identifier: MIT
"""Process wide holder for settings and the prompt template loader.

Only the command-line entry point and the template helpers in
:mod:`io_utils.loader` read from here. The retry orchestrator and its
collaborators are wired explicitly and never touch this singleton.
"""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, ClassVar

import logfire

from utils import FilePromptLoader, PromptLoader

if TYPE_CHECKING:  # pragma: no cover - for type checkers only
    from runtime.settings import Settings


class RuntimeEnv:
    """Active :class:`Settings` plus the loader used for prompt templates."""

    _instance: ClassVar["RuntimeEnv | None"] = None
    _lock: ClassVar[Lock] = Lock()

    def __init__(self, settings: "Settings") -> None:
        self.settings = settings
        self._loader_lock = Lock()
        self._prompt_loader: PromptLoader = FilePromptLoader(settings.prompt_dir)

    @property
    def prompt_loader(self) -> PromptLoader:
        return self._prompt_loader

    @prompt_loader.setter
    def prompt_loader(self, loader: PromptLoader) -> None:
        with self._loader_lock:
            previous, self._prompt_loader = self._prompt_loader, loader
        previous.clear_cache()

    def use_prompt_dir(self, path: Path) -> None:
        """Read templates from ``path`` from now on."""
        logfire.debug("Prompt directory changed", path=str(path))
        self.prompt_loader = FilePromptLoader(Path(path))

    @classmethod
    def initialize(cls, settings: "Settings") -> "RuntimeEnv":
        """Install a fresh environment built from ``settings`` and return it."""
        with logfire.span("runtime_env.initialize"), cls._lock:
            logfire.info(
                "Runtime environment ready",
                model=settings.model,
                prompt_dir=str(settings.prompt_dir),
            )
            cls._instance = cls(settings)
            return cls._instance

    @classmethod
    def instance(cls) -> "RuntimeEnv":
        """Return the installed environment.

        Raises:
            RuntimeError: If :meth:`initialize` has not run yet.
        """
        current = cls._instance
        if current is None:
            raise RuntimeError("RuntimeEnv has not been initialised")
        return current

    @classmethod
    def reset(cls) -> None:
        """Drop the installed environment after clearing its template cache."""
        with cls._lock:
            current, cls._instance = cls._instance, None
        if current is not None:
            current.prompt_loader.clear_cache()


__all__ = ["RuntimeEnv"]
