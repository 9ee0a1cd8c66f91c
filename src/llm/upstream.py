# SPDX-License-Identifier: MIT
"""Upstream generation call shapes and a Pydantic-AI backed implementation.

The invoker accepts any object exposing one or more of the three call shapes
below; no shape is assumed to exist. :class:`PydanticAIUpstream` provides all
three on top of a Pydantic-AI model so the command-line tool can talk to any
provider Pydantic-AI supports.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

import logfire
from pydantic_ai import Agent, messages
from pydantic_ai.models import Model

from models import ChatMessage


@runtime_checkable
class MessagesCall(Protocol):
    """Structured call taking a role-tagged message list."""

    async def generate_messages(self, chat: Sequence[ChatMessage]) -> str: ...


@runtime_checkable
class SystemPromptCall(Protocol):
    """Call taking a separate system prompt and a plain user string."""

    async def generate_with_system(self, system_prompt: str, prompt: str) -> str: ...


@runtime_checkable
class QuietCall(Protocol):
    """Background call that leaves conversation state untouched."""

    async def generate_quiet(self, prompt: str) -> str: ...


CALL_SHAPES: tuple[type, ...] = (MessagesCall, SystemPromptCall, QuietCall)


def supports_any_call(upstream: Any) -> bool:
    """Return ``True`` when ``upstream`` exposes at least one call shape."""
    return upstream is not None and any(isinstance(upstream, s) for s in CALL_SHAPES)


class PydanticAIUpstream:
    """Expose every call shape over a Pydantic-AI model.

    Each call builds a fresh ``Agent`` so no conversation history leaks between
    prompt discovery requests.
    """

    def __init__(self, model: Model | str) -> None:
        self._model = model

    @property
    def model_name(self) -> str:
        """Return a printable model identifier."""
        if isinstance(self._model, str):
            return self._model
        return getattr(self._model, "model_name", type(self._model).__name__)

    async def _run(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        history: list[messages.ModelMessage] | None = None,
    ) -> str:
        agent: Agent[None, str] = Agent(
            self._model,
            output_type=str,
            system_prompt=system_prompt or (),
        )
        logfire.debug(
            "Calling upstream model",
            model_name=self.model_name,
            prompt_chars=len(prompt),
        )
        result = await agent.run(prompt, message_history=history)
        return result.output

    async def generate_messages(self, chat: Sequence[ChatMessage]) -> str:
        """Send ``chat`` with system parts seeded as history."""
        system = "\n\n".join(m.content for m in chat if m.role == "system")
        parts: list[Any] = [messages.SystemPromptPart(content=system)] if system else []
        history: list[messages.ModelMessage] = []
        for message in chat[:-1]:
            if message.role == "user":
                parts.append(messages.UserPromptPart(content=message.content))
            elif message.role == "assistant":
                if parts:
                    history.append(messages.ModelRequest(parts=parts))
                    parts = []
                history.append(
                    messages.ModelResponse(
                        parts=[messages.TextPart(content=message.content)]
                    )
                )
        if parts:
            history.append(messages.ModelRequest(parts=parts))
        last = chat[-1] if chat else None
        prompt = last.content if last is not None and last.role == "user" else ""
        return await self._run(prompt, history=history or None)

    async def generate_with_system(self, system_prompt: str, prompt: str) -> str:
        """Send ``prompt`` with ``system_prompt`` as the agent instructions."""
        return await self._run(prompt, system_prompt=system_prompt)

    async def generate_quiet(self, prompt: str) -> str:
        """Send ``prompt`` alone."""
        return await self._run(prompt)


__all__ = [
    "CALL_SHAPES",
    "MessagesCall",
    "PydanticAIUpstream",
    "QuietCall",
    "SystemPromptCall",
    "supports_any_call",
]
