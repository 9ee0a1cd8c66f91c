# SPDX-License-Identifier: MIT
"""Pydantic models describing chat turns, generation results and configuration.

These definitions act as the contract between the retry orchestrator, the
generation invoker, the response parser and any presentation code that reads
retry state or queue timing. Each class documents the structure and semantics
of the data exchanged throughout the system.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from constants import (
    DEFAULT_CONTEXT_MESSAGE_COUNT,
    DEFAULT_CONTEXT_TOTAL_CHAR_BUDGET,
    DEFAULT_CONTEXT_TURN_CHAR_BUDGET,
    DEFAULT_MAX_PROMPTS_PER_MESSAGE,
    DEFAULT_PROMPT_DETECTION_PATTERNS,
    RETRY_DELAYS_MS,
)


class StrictModel(BaseModel):
    """Base model with strict settings to prevent shape drift."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=False)


class GenerationStatus(str, Enum):
    """Outcome of a single prompt discovery call."""

    SUCCESS = "success"
    NO_PROMPTS = "no-prompts"
    ERROR = "error"


class GenerationErrorType(str, Enum):
    """Classification attached to failed attempts."""

    GENERATION_UNAVAILABLE = "generation-unavailable"
    CALL_FAILED = "call-failed"
    INVALID_FORMAT = "invalid-format"
    INSERTION_FAILED = "insertion-failed"
    CONTEXT_UNAVAILABLE = "context-unavailable"
    ATTEMPT_FAILED = "attempt-failed"


class RetryStatus(str, Enum):
    """States a tracked message can be in.

    Success and "no prompts" are not listed: both remove the tracked state.
    """

    RUNNING = "running"
    SCHEDULED = "scheduled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PromptSuggestion(StrictModel):
    """Image prompt proposed by the model plus where it belongs in the message."""

    text: Annotated[
        str, Field(min_length=1, description="Prompt passed to the image generator.")
    ]
    insert_after: Annotated[
        str,
        Field(min_length=1, description="Message text preceding the insertion point."),
    ]
    insert_before: Annotated[
        str,
        Field(min_length=1, description="Message text following the insertion point."),
    ]
    reasoning: str | None = Field(
        None, description="Optional free-text rationale supplied by the model."
    )


class GenerationAttemptResult(StrictModel):
    """Tagged result of one invocation of the generation chain."""

    status: GenerationStatus
    suggestions: list[PromptSuggestion] = Field(default_factory=list)
    error_type: GenerationErrorType | None = None
    error_message: str | None = None
    raw_response: str | None = Field(
        None, description="Upstream text kept for diagnostics."
    )


class InsertionResult(StrictModel):
    """Outcome of embedding suggestions into message text."""

    updated_text: str
    inserted_count: int = Field(0, ge=0)
    failed: list[PromptSuggestion] = Field(default_factory=list)


class ChatTurn(BaseModel):
    """One message of the conversation as seen by the orchestrator."""

    name: str | None = None
    is_user: bool = False
    text: str = ""


class ChatMessage(StrictModel):
    """Role-tagged message used by the message-array call shape."""

    role: Literal["system", "user", "assistant"]
    content: str


class RetryState(StrictModel):
    """Public snapshot of the retry state machine for one message."""

    message_id: int
    status: RetryStatus
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(len(RETRY_DELAYS_MS), ge=0)
    next_retry_at: float | None = Field(
        None, description="Epoch milliseconds of the pending retry."
    )
    last_error_type: str | None = None
    last_error_message: str | None = None

    @model_validator(mode="after")
    def _check_schedule(self) -> "RetryState":
        if (self.status is RetryStatus.SCHEDULED) != (self.next_retry_at is not None):
            raise ValueError("next_retry_at is set only while scheduled")
        if self.retry_count > self.max_retries:
            raise ValueError("retry_count exceeds max_retries")
        return self


class QueueTimingSnapshot(BaseModel):
    """Live figures from the image queue used to estimate completion time."""

    pending_count: float = 0
    cooldown_remaining_ms: float = 0
    average_generation_duration_ms: float | None = None
    min_generation_interval_ms: float = 0
    max_concurrent: float = 1


class GenerationOptions(StrictModel):
    """Knobs controlling prompt construction and response handling."""

    context_message_count: int = Field(
        DEFAULT_CONTEXT_MESSAGE_COUNT,
        ge=0,
        description="Number of prior turns offered as context.",
    )
    context_turn_char_budget: int = Field(
        DEFAULT_CONTEXT_TURN_CHAR_BUDGET,
        ge=1,
        description="Maximum characters kept from any single prior turn.",
    )
    context_total_char_budget: int = Field(
        DEFAULT_CONTEXT_TOTAL_CHAR_BUDGET,
        ge=1,
        description="Maximum characters for the whole context window.",
    )
    max_prompts_per_message: int = Field(
        DEFAULT_MAX_PROMPTS_PER_MESSAGE,
        ge=1,
        description="Suggestions kept per message; extras are dropped in order.",
    )
    frequency_guidelines: str = Field(
        "", description="Text substituted for {{FREQUENCY_GUIDELINES}}."
    )
    prompt_writing_guidelines: str = Field(
        "", description="Text substituted for {{PROMPT_WRITING_GUIDELINES}}."
    )
    prompt_detection_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROMPT_DETECTION_PATTERNS),
        description="Prompt tag templates containing a {PROMPT} placeholder.",
    )

    @field_validator("prompt_detection_patterns")
    @classmethod
    def _require_placeholder(cls, value: list[str]) -> list[str]:
        """Ensure every pattern carries the ``{PROMPT}`` placeholder."""

        for pattern in value:
            if "{PROMPT}" not in pattern:
                raise ValueError(f"pattern must contain {{PROMPT}}: {pattern!r}")
        return value


class AppConfig(StrictModel):
    """Top-level application configuration read from ``config/app.yaml``."""

    model: Annotated[
        str,
        Field(min_length=1, description="Chat model in '<provider>:<model>' format."),
    ] = "openai:gpt-5-mini"
    log_level: Annotated[
        str, Field(min_length=1, description="Logging verbosity level.")
    ] = "INFO"
    prompt_dir: Annotated[
        Path,
        Field(description="Directory containing prompt templates."),
    ] = Path("prompts")
    request_timeout: float = Field(
        60, gt=0, description="Per-call upstream timeout in seconds."
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


__all__ = [
    "AppConfig",
    "ChatMessage",
    "ChatTurn",
    "GenerationAttemptResult",
    "GenerationErrorType",
    "GenerationOptions",
    "GenerationStatus",
    "InsertionResult",
    "PromptSuggestion",
    "QueueTimingSnapshot",
    "RetryState",
    "RetryStatus",
    "StrictModel",
]
