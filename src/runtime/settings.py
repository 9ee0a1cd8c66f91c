# SPDX-License-Identifier: MIT
"""Centralised application configuration management.

This module exposes :class:`Settings`, a ``pydantic-settings`` model that
combines values sourced from ``config/app.yaml`` and ``PD_`` prefixed
environment variables. Environment variables take precedence over file-based
values and the merged configuration is validated before use.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from constants import RETRY_DELAYS_MS
from io_utils.loader import load_app_config
from models import GenerationOptions


class Settings(BaseSettings):
    """Application settings combining file-based and environment configuration."""

    model: str = Field(
        "openai:gpt-5-mini", description="Chat model in '<provider>:<model>' format."
    )
    log_level: str = Field("INFO", description="Logging verbosity level.")
    prompt_dir: Path = Field(
        Path("prompts"), description="Directory containing prompt templates."
    )
    request_timeout: float = Field(
        60, gt=0, description="Per-call upstream timeout in seconds."
    )
    logfire_token: str | None = Field(
        None, description="Logfire authentication token, if available.", repr=False
    )
    diagnostics: bool = Field(
        False, description="Enable verbose diagnostics and tracing."
    )
    generation: GenerationOptions = Field(default_factory=GenerationOptions)
    retry_delays_ms: list[Annotated[int, Field(ge=0)]] = Field(
        default_factory=lambda: list(RETRY_DELAYS_MS),
        min_length=1,
        description="Backoff table in milliseconds, one entry per retry.",
    )

    model_config = SettingsConfigDict(
        env_prefix="PD_", env_nested_delimiter="__", extra="ignore"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; the environment overrides them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load and validate application settings.

    Configuration values are read from the application configuration file and
    then merged with environment variables using ``pydantic-settings``. A
    ``.env`` file in the working directory is loaded automatically when
    present. ``config_path`` overrides the default ``config/app.yaml``
    location; a missing default file falls back to built-in defaults.

    Args:
        config_path: Optional path to a YAML configuration file.

    Returns:
        Settings: Fully validated application configuration.

    Raises:
        RuntimeError: If configuration values are invalid.
        FileNotFoundError: If an explicit ``config_path`` does not exist.
    """
    if config_path:
        cfg_path = Path(config_path)
        config = load_app_config(cfg_path.parent, cfg_path.name)
    elif (Path("config") / "app.yaml").exists():
        config = load_app_config()
    else:
        config = None
    env_file_path = Path(".env")
    env_file = env_file_path if env_file_path.exists() else None
    file_values = (
        config.model_dump(mode="json", exclude_unset=True) if config is not None else {}
    )
    try:
        return Settings(**file_values, _env_file=env_file)
    except ValidationError as exc:
        # Summarise validation issues so the caller receives clear feedback.
        details = "; ".join(
            f"{'.'.join(map(str, error['loc']))}: {error['msg']}"
            for error in exc.errors()
        )
        raise RuntimeError(f"Invalid configuration: {details}") from exc


__all__ = ["Settings", "load_settings"]
