"""Input and output helpers for configuration, prompts and transcripts.

Exports:
    configure_prompt_dir: Set the base directory for prompt templates.
    load_app_config: Read ``config/app.yaml`` into :class:`models.AppConfig`.
    load_prompt_text: Read a prompt template from disk.
    load_system_template: Read the prompt discovery system template.
    read_lines: Return existing lines from a file.
    atomic_write: Write files atomically.
    JsonlChatStore: File-backed conversation with debounced saves.
"""

from __future__ import annotations

from .chat_store import JsonlChatStore
from .loader import (
    configure_prompt_dir,
    load_app_config,
    load_prompt_text,
    load_system_template,
)
from .persistence import atomic_write, read_lines

__all__ = [
    "JsonlChatStore",
    "atomic_write",
    "configure_prompt_dir",
    "load_app_config",
    "load_prompt_text",
    "load_system_template",
    "read_lines",
]
