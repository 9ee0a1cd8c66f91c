# SPDX-License-Identifier: MIT
"""Prompt discovery invocation with an ordered fallback chain.

:class:`GenerationInvoker` turns a message and its recent history into a
system instruction and a user prompt, then tries each upstream call shape in
turn until one answers. When every shape fails with what looks like a
transient or size related error, the whole chain is retried once without any
conversation history. The raw answer is classified by
:mod:`generation.response_parser`.

Callers always receive a :class:`~models.GenerationAttemptResult`; upstream
errors never escape :meth:`GenerationInvoker.generate`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import logfire

from generation.context_window import (
    bound_context,
    build_system_prompt,
    build_user_prompt,
)
from generation.response_parser import classify_response
from llm.retry import is_transient_failure
from llm.upstream import supports_any_call
from models import (
    ChatMessage,
    ChatTurn,
    GenerationAttemptResult,
    GenerationErrorType,
    GenerationOptions,
    GenerationStatus,
)
from observability import telemetry


class UpstreamShapeMissing(RuntimeError):
    """Raised when the upstream does not provide the call a strategy needs."""


async def _call_with_messages(upstream: Any, system: str, user: str) -> Any:
    call = getattr(upstream, "generate_messages", None)
    if call is None:
        raise UpstreamShapeMissing("generate_messages not provided")
    return await call(
        [
            ChatMessage(role="system", content=system),
            ChatMessage(role="user", content=user),
        ]
    )


async def _call_with_system(upstream: Any, system: str, user: str) -> Any:
    call = getattr(upstream, "generate_with_system", None)
    if call is None:
        raise UpstreamShapeMissing("generate_with_system not provided")
    return await call(system, user)


async def _call_quiet(upstream: Any, system: str, user: str) -> Any:
    call = getattr(upstream, "generate_quiet", None)
    if call is None:
        raise UpstreamShapeMissing("generate_quiet not provided")
    return await call(f"{system}\n\n{user}")


@dataclass(frozen=True)
class FallbackStrategy:
    """One independent way of asking the upstream for an answer."""

    name: str
    invoke: Callable[[Any, str, str], Awaitable[Any]]


DEFAULT_STRATEGIES: tuple[FallbackStrategy, ...] = (
    FallbackStrategy("messages", _call_with_messages),
    FallbackStrategy("system", _call_with_system),
    FallbackStrategy("quiet", _call_quiet),
)


@dataclass
class ChainOutcome:
    """Result of walking the fallback chain once."""

    text: str | None
    error: str | None = None
    strategy: str | None = None


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class GenerationInvoker:
    """Build prompts, call the upstream and classify its answer."""

    def __init__(
        self,
        upstream: Any,
        system_template: str,
        *,
        strategies: Sequence[FallbackStrategy] = DEFAULT_STRATEGIES,
        request_timeout: float | None = None,
    ) -> None:
        """Initialise the invoker.

        Args:
            upstream: Object exposing any of ``generate_messages``,
                ``generate_with_system`` or ``generate_quiet``.
            system_template: System instruction containing the guideline
                placeholders.
            strategies: Fallback order; the first success wins.
            request_timeout: Optional per-call timeout in seconds.
        """
        self.upstream = upstream
        self.system_template = system_template
        self.strategies = tuple(strategies)
        self.request_timeout = request_timeout

    async def _invoke(self, strategy: FallbackStrategy, system: str, user: str) -> str:
        call = strategy.invoke(self.upstream, system, user)
        if self.request_timeout is None:
            text = await call
        else:
            try:
                text = await asyncio.wait_for(call, timeout=self.request_timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(
                    f"timed out after {self.request_timeout:g}s"
                ) from exc
        if not isinstance(text, str):
            raise TypeError(f"expected text response, got {type(text).__name__}")
        return text

    async def _run_chain(self, system: str, user: str) -> ChainOutcome:
        """Try each strategy in order and stop at the first success."""
        failures: list[str] = []
        for strategy in self.strategies:
            start = time.monotonic()
            with logfire.span(
                "prompt_discovery.call", attributes={"strategy": strategy.name}
            ):
                try:
                    text = await self._invoke(strategy, system, user)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # pylint: disable=broad-except
                    reason = _describe(exc)
                    failures.append(f"{strategy.name}: {reason}")
                    logfire.warning(
                        "Prompt discovery call failed",
                        strategy=strategy.name,
                        error=reason,
                    )
                    continue
            logfire.debug(
                "Prompt discovery call succeeded",
                strategy=strategy.name,
                duration=time.monotonic() - start,
                response_chars=len(text),
            )
            telemetry.record_strategy(strategy.name)
            return ChainOutcome(text=text, strategy=strategy.name)
        return ChainOutcome(text=None, error="; ".join(failures))

    async def generate(
        self,
        message_text: str,
        history: Sequence[ChatTurn],
        options: GenerationOptions,
    ) -> GenerationAttemptResult:
        """Return suggestions for ``message_text`` given prior ``history``.

        Args:
            message_text: Text of the message to illustrate.
            history: Earlier turns, oldest first. Only the last
                ``options.context_message_count`` are considered.
            options: Prompt and parsing configuration.

        Returns:
            A tagged result; this method does not raise for upstream failures.
        """
        if not supports_any_call(self.upstream):
            logfire.error("No upstream generation call available")
            return GenerationAttemptResult(
                status=GenerationStatus.ERROR,
                error_type=GenerationErrorType.GENERATION_UNAVAILABLE,
                error_message="LLM generation not available (no call surface)",
            )

        count = options.context_message_count
        recent = list(history)[-count:] if count > 0 else []
        window = bound_context(recent, options)
        system_prompt = build_system_prompt(self.system_template, options)
        user_prompt = build_user_prompt(message_text, window)
        logfire.debug(
            "Requesting prompt suggestions",
            message_chars=len(message_text),
            context_turns=len(window),
            user_prompt_chars=len(user_prompt),
        )

        outcome = await self._run_chain(system_prompt, user_prompt)
        if outcome.text is None and window and is_transient_failure(outcome.error or ""):
            logfire.warning(
                "Retrying prompt discovery without context", error=outcome.error
            )
            telemetry.record_context_drop()
            first_error = outcome.error
            outcome = await self._run_chain(
                system_prompt, build_user_prompt(message_text, [])
            )
            if outcome.text is None:
                outcome.error = f"{first_error} | retry without context: {outcome.error}"

        if outcome.text is None:
            logfire.error("Prompt discovery failed", error=outcome.error)
            return GenerationAttemptResult(
                status=GenerationStatus.ERROR,
                error_type=GenerationErrorType.CALL_FAILED,
                error_message=outcome.error,
            )
        return classify_response(outcome.text, options.max_prompts_per_message)


__all__ = [
    "ChainOutcome",
    "DEFAULT_STRATEGIES",
    "FallbackStrategy",
    "GenerationInvoker",
    "UpstreamShapeMissing",
]
