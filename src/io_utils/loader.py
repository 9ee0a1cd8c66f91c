# SPDX-License-Identifier: MIT
"""Loading helpers for configuration files and prompt templates.

Configuration lives in YAML and is validated with :class:`pydantic.TypeAdapter`.
Prompt templates are markdown files resolved through the runtime prompt loader
and memoised for the lifetime of the process.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import TypeVar

import logfire
import yaml
from pydantic import TypeAdapter, ValidationError

from constants import SYSTEM_PROMPT_TEMPLATE_NAME
from models import AppConfig
from utils import ErrorHandler, FilePromptLoader, LoggingErrorHandler

T = TypeVar("T")


def configure_prompt_dir(path: Path | str) -> None:
    """Set the base directory for prompt templates."""
    from runtime.environment import RuntimeEnv

    RuntimeEnv.instance().use_prompt_dir(Path(path))
    clear_prompt_cache()


def _read_file(path: Path, error_handler: ErrorHandler | None = None) -> str:
    """Return the stripped contents of ``path``.

    Raises:
        FileNotFoundError: If the file does not exist.
        RuntimeError: If the file cannot be read.
    """
    handler = error_handler or LoggingErrorHandler()
    with logfire.span("fs.read_text", attributes={"path": str(path)}):
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError as exc:
            handler.handle(f"File not found: {path}", exc)
            raise
        except OSError as exc:
            handler.handle(f"Error reading file {path}", exc)
            raise RuntimeError(
                f"An error occurred while reading the file: {exc}"
            ) from exc
        logfire.debug("Read text file", path=str(path), bytes=len(text))
        return text


def _read_yaml_file(
    path: Path,
    schema: type[T],
    error_handler: ErrorHandler | None = None,
) -> T:
    """Return YAML data loaded from ``path`` validated against ``schema``.

    An empty document validates as an empty mapping so every field falls back
    to its default.
    """
    handler = error_handler or LoggingErrorHandler()
    with logfire.span("fs.read_yaml", attributes={"path": str(path)}):
        try:
            data = yaml.safe_load(_read_file(path, handler)) or {}
            return TypeAdapter(schema).validate_python(data)
        except FileNotFoundError:
            raise
        except (RuntimeError, ValidationError, yaml.YAMLError, ValueError) as exc:
            handler.handle(f"Error reading YAML file {path}", exc)
            raise RuntimeError(
                f"An error occurred while reading the YAML file: {exc}"
            ) from exc


@lru_cache(maxsize=None)
def load_app_config(
    base_dir: Path | str = Path("config"),
    filename: Path | str = Path("app.yaml"),
) -> AppConfig:
    """Return application configuration from ``base_dir``.

    Results are cached for the lifetime of the process.
    """
    return _read_yaml_file(Path(base_dir) / Path(filename), AppConfig)


@lru_cache(maxsize=None)
def load_prompt_text(prompt_name: str, base_dir: Path | str | None = None) -> str:
    """Return the contents of a prompt template.

    Use :func:`clear_prompt_cache` when template files change.
    """
    if base_dir is None:
        from runtime.environment import RuntimeEnv

        loader = RuntimeEnv.instance().prompt_loader
    else:
        loader = FilePromptLoader(Path(base_dir))
    with logfire.span("loader.load_prompt_text", attributes={"name": prompt_name}):
        try:
            return loader.load(prompt_name)
        except (OSError, ValueError, RuntimeError) as exc:
            LoggingErrorHandler().handle(f"Error loading prompt {prompt_name}", exc)
            raise


def load_system_template(base_dir: Path | str | None = None) -> str:
    """Return the prompt discovery system instruction template."""
    return load_prompt_text(SYSTEM_PROMPT_TEMPLATE_NAME, base_dir)


def clear_prompt_cache() -> None:
    """Invalidate memoised prompt text."""
    from runtime.environment import RuntimeEnv

    load_prompt_text.cache_clear()
    try:
        RuntimeEnv.instance().prompt_loader.clear_cache()
    except RuntimeError:
        logfire.debug("No runtime environment; only the text cache was cleared")


__all__ = [
    "clear_prompt_cache",
    "configure_prompt_dir",
    "load_app_config",
    "load_prompt_text",
    "load_system_template",
]
