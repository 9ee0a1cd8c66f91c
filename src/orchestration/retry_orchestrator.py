# SPDX-License-Identifier: MIT
"""Per-message retry state machine for prompt discovery.

Each assistant message that needs image prompts gets one tracked state::

    running --error--> scheduled --timer--> running
    running --error, retries exhausted--> failed
    running/scheduled --cancel--> cancelled
    failed/cancelled --manual request--> running (fresh state)

Success and "no prompts" remove the tracked state. On success the message text
already carries prompt tags and the image session starter is invoked once.

All work runs on the event loop. A state holds at most one timer task, which
is cleared whenever the state leaves ``scheduled`` and detached the moment it
fires. Cancellation is cooperative: the attempt checks its token at the start
and after every await, and returns without side effects once it is set.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

import logfire

from constants import RETRY_DELAYS_MS
from generation.invoker import GenerationInvoker
from generation.markers import has_image_prompts
from llm.retry import retry_delay_ms
from models import (
    GenerationErrorType,
    GenerationOptions,
    GenerationStatus,
    RetryState,
    RetryStatus,
)
from observability import telemetry
from orchestration.cancellation import CancellationToken
from orchestration.events import StateChangeRegistry, StateListener
from orchestration.notifications import LogfireNotifier
from orchestration.protocols import (
    ChatContext,
    Notifier,
    PromptInserter,
    SessionStarter,
)
from utils import ErrorHandler, LoggingErrorHandler


class AttemptOutcome(str, Enum):
    """Result of a single attempt as seen by the state machine."""

    SUCCESS = "success"
    NO_PROMPTS = "no-prompts"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class _TrackedState:
    """Mutable state for one message, including its token and timer."""

    message_id: int
    max_retries: int
    status: RetryStatus = RetryStatus.RUNNING
    retry_count: int = 0
    next_retry_at: float | None = None
    last_error_type: str | None = None
    last_error_message: str | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    timer: asyncio.Task[None] | None = None

    def snapshot(self) -> RetryState:
        return RetryState(
            message_id=self.message_id,
            status=self.status,
            retry_count=self.retry_count,
            max_retries=self.max_retries,
            next_retry_at=self.next_retry_at,
            last_error_type=self.last_error_type,
            last_error_message=self.last_error_message,
        )


def _now_ms() -> float:
    return time.time() * 1000


class RetryOrchestrator:
    """Own the retry state table and drive prompt discovery per message."""

    def __init__(
        self,
        invoker: GenerationInvoker,
        *,
        context_provider: Callable[[], ChatContext | None],
        session_starter: SessionStarter,
        inserter: PromptInserter,
        options: GenerationOptions | None = None,
        notifier: Notifier | None = None,
        registry: StateChangeRegistry | None = None,
        retry_delays_ms: Sequence[int] = RETRY_DELAYS_MS,
        error_handler: ErrorHandler | None = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            invoker: Prompt discovery call used for every attempt.
            context_provider: Returns the active conversation, re-read on each
                attempt, or ``None`` when the host is unavailable.
            session_starter: Downstream image queue hand-off.
            inserter: Embeds suggestions into message text.
            options: Generation configuration. Defaults apply when omitted.
            notifier: User-facing notification sink.
            registry: Subscription registry for state changes.
            retry_delays_ms: Backoff table; its length is the retry budget.
            error_handler: Processor for collaborator failures.
            clock: Returns the current time in epoch milliseconds.
        """
        if not retry_delays_ms:
            raise ValueError("retry_delays_ms must not be empty")
        self.invoker = invoker
        self.options = options if options is not None else GenerationOptions()
        self._context_provider = context_provider
        self._sessions = session_starter
        self._inserter = inserter
        self._notifier: Notifier = (
            notifier if notifier is not None else LogfireNotifier()
        )
        self._error_handler = (
            error_handler if error_handler is not None else LoggingErrorHandler()
        )
        if registry is None:
            registry = StateChangeRegistry(self._error_handler)
        self._registry = registry
        self._retry_delays = tuple(retry_delays_ms)
        self._clock = clock
        self._states: dict[int, _TrackedState] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def max_retries(self) -> int:
        """Return the retry budget derived from the delay table."""
        return len(self._retry_delays)

    # -- Public API -----------------------------------------------------------------

    def get_state(self, message_id: int) -> RetryState | None:
        """Return the public retry state for ``message_id`` if tracked."""
        state = self._states.get(message_id)
        return state.snapshot() if state else None

    def tracked_ids(self) -> list[int]:
        """Return identifiers of every tracked message."""
        return list(self._states)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for state changes; returns an unsubscribe."""
        return self._registry.subscribe(listener)

    def cancel_retries(self, message_id: int, *, silent: bool = False) -> None:
        """Cancel the running attempt and any pending retry for ``message_id``."""
        state = self._states.get(message_id)
        if state is None:
            return
        self._clear_timer(state)
        state.token.cancel()
        state.status = RetryStatus.CANCELLED
        state.next_retry_at = None
        logfire.info("Cancelled prompt retries", message_id=message_id)
        if not silent:
            self._notify("info", "prompt_retry_cancelled", message_id=message_id)
        self._emit(message_id)

    def cancel_all(self) -> None:
        """Cancel and forget every tracked message.

        Call when the active conversation changes: identifiers restart in the
        newly loaded conversation and must not pick up stale state.
        """
        for message_id in list(self._states):
            self.cancel_retries(message_id, silent=True)
        self._states.clear()

    async def request_generation(self, message_id: int, *, manual: bool = False) -> None:
        """Discover prompts for ``message_id`` and hand off to image generation.

        Returns once the first attempt has settled: succeeded, found nothing,
        scheduled a retry or failed terminally. A non-manual request for a
        message that is already tracked does nothing; a manual request
        discards the existing state, cancelling it first, and starts over.
        """
        context = self._context_provider()
        if context is None:
            logfire.warning("Chat context unavailable", message_id=message_id)
            return
        message = context.get_message(message_id)
        if message is None or message.is_user:
            return

        if has_image_prompts(message.text, self.options.prompt_detection_patterns):
            existing = self._states.pop(message_id, None)
            if existing is not None:
                self._clear_timer(existing)
                existing.token.cancel()
                self._emit(message_id)
            await self._hand_off(message_id)
            return

        existing = self._states.get(message_id)
        if existing is not None:
            if not manual:
                # Terminal states only restart on a manual request.
                logfire.debug(
                    "Ignoring non-manual generation request",
                    message_id=message_id,
                    status=existing.status.value,
                )
                return
            if existing.status in (RetryStatus.RUNNING, RetryStatus.SCHEDULED):
                self.cancel_retries(message_id, silent=True)
            else:
                self._clear_timer(existing)
            del self._states[message_id]

        state = _TrackedState(message_id=message_id, max_retries=self.max_retries)
        self._states[message_id] = state
        self._emit(message_id)
        await self._run_attempt(state)

    async def aclose(self) -> None:
        """Cancel everything and wait for in-flight tasks to finish."""
        self.cancel_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- State machine --------------------------------------------------------------

    def _emit(self, message_id: int) -> None:
        self._registry.emit(message_id)

    def _is_current(self, state: _TrackedState) -> bool:
        return self._states.get(state.message_id) is state

    def _release(self, state: _TrackedState) -> None:
        """Stop tracking ``state`` unless a newer state replaced it."""
        self._clear_timer(state)
        if self._is_current(state):
            del self._states[state.message_id]

    @staticmethod
    def _clear_timer(state: _TrackedState) -> None:
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

    def _spawn(self, coro: object) -> asyncio.Task[None]:
        task: asyncio.Task[None] = asyncio.ensure_future(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            self._error_handler.handle("Retry task failed", exc)

    def _notify(self, level: str, key: str, **params: object) -> None:
        """Send a notification; a failing notifier is reported, not raised."""
        try:
            getattr(self._notifier, level)(key, **params)
        except Exception as exc:  # pylint: disable=broad-except
            self._error_handler.handle(f"Notifier failed for {key}", exc)

    def _mark_cancelled(self, state: _TrackedState) -> None:
        state.token.cancel()
        state.status = RetryStatus.CANCELLED
        state.next_retry_at = None
        self._clear_timer(state)
        telemetry.record_outcome(AttemptOutcome.CANCELLED.value)
        if self._is_current(state):
            self._emit(state.message_id)

    async def _hand_off(self, message_id: int) -> None:
        """Start image generation unless a session already exists."""
        try:
            if self._sessions.has_session(message_id):
                logfire.debug(
                    "Image session already active; skipping start",
                    message_id=message_id,
                )
                return
            await self._sessions.start_session(message_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            self._error_handler.handle(
                f"Failed to start image generation session for message {message_id}",
                exc,
            )

    async def _attempt_once(
        self, state: _TrackedState, context: ChatContext
    ) -> AttemptOutcome:
        """Run one discovery call and embed its suggestions."""
        if state.token.cancelled:
            return AttemptOutcome.CANCELLED
        message = context.get_message(state.message_id)
        if message is None or message.is_user:
            return AttemptOutcome.CANCELLED
        text = message.text
        if has_image_prompts(text, self.options.prompt_detection_patterns):
            logfire.debug(
                "Message already contains prompt tags", message_id=state.message_id
            )
            return AttemptOutcome.SUCCESS

        history = context.history_before(
            state.message_id, self.options.context_message_count
        )
        with logfire.span(
            "retry_orchestrator.attempt",
            attributes={"message_id": state.message_id, "retry": state.retry_count},
        ):
            result = await self.invoker.generate(text, history, self.options)
        if state.token.cancelled:
            return AttemptOutcome.CANCELLED

        if result.status is GenerationStatus.NO_PROMPTS:
            return AttemptOutcome.NO_PROMPTS
        if result.status is not GenerationStatus.SUCCESS:
            state.last_error_type = (
                result.error_type.value if result.error_type else None
            )
            state.last_error_message = result.error_message
            return AttemptOutcome.ERROR
        if not result.suggestions:
            return AttemptOutcome.NO_PROMPTS

        insertion = self._inserter.insert(text, result.suggestions)
        if insertion.inserted_count == 0:
            state.last_error_type = GenerationErrorType.INSERTION_FAILED.value
            state.last_error_message = "No prompts could be inserted into message text"
            return AttemptOutcome.ERROR

        context.update_message_text(state.message_id, insertion.updated_text)
        await context.save()
        if state.token.cancelled:
            return AttemptOutcome.CANCELLED
        logfire.info(
            "Inserted prompt tags",
            message_id=state.message_id,
            count=insertion.inserted_count,
        )
        return AttemptOutcome.SUCCESS

    async def _run_attempt(self, state: _TrackedState) -> None:
        """Run an attempt for ``state`` and apply the resulting transition."""
        if state.token.cancelled:
            return
        message_id = state.message_id

        context = self._context_provider()
        if context is None:
            state.last_error_type = GenerationErrorType.CONTEXT_UNAVAILABLE.value
            state.last_error_message = "Chat context not available"
        else:
            try:
                outcome = await self._attempt_once(state, context)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-except
                self._error_handler.handle(
                    f"Prompt generation attempt failed for message {message_id}", exc
                )
                state.last_error_type = GenerationErrorType.ATTEMPT_FAILED.value
                state.last_error_message = str(exc) or type(exc).__name__
                outcome = AttemptOutcome.ERROR

            if outcome is AttemptOutcome.CANCELLED:
                self._mark_cancelled(state)
                return
            if outcome is AttemptOutcome.NO_PROMPTS:
                telemetry.record_outcome(outcome.value)
                self._release(state)
                self._emit(message_id)
                return
            if outcome is AttemptOutcome.SUCCESS:
                telemetry.record_outcome(outcome.value)
                await self._hand_off(message_id)
                if state.token.cancelled:
                    return
                self._release(state)
                self._emit(message_id)
                return

        telemetry.record_outcome(AttemptOutcome.ERROR.value)
        if state.token.cancelled:
            self._mark_cancelled(state)
            return
        if state.retry_count >= state.max_retries:
            self._fail(state)
            return
        self._schedule(state)

    def _fail(self, state: _TrackedState) -> None:
        state.status = RetryStatus.FAILED
        state.next_retry_at = None
        self._clear_timer(state)
        logfire.warning(
            "Prompt generation failed after all retries",
            message_id=state.message_id,
            retries=state.max_retries,
            error_type=state.last_error_type,
        )
        self._notify(
            "warning",
            "prompt_retry_failed",
            message_id=state.message_id,
            error_type=state.last_error_type,
            error_message=state.last_error_message,
        )
        self._emit(state.message_id)

    def _schedule(self, state: _TrackedState) -> None:
        delay = retry_delay_ms(state.retry_count, self._retry_delays)
        state.status = RetryStatus.SCHEDULED
        state.next_retry_at = self._clock() + delay
        self._clear_timer(state)
        state.timer = self._spawn(self._fire_retry(state, delay))
        telemetry.record_retry_scheduled()
        self._notify(
            "warning",
            "prompt_retrying",
            message_id=state.message_id,
            seconds=math.floor(delay / 1000 + 0.5),
            attempt=state.retry_count + 1,
            total=state.max_retries,
        )
        self._emit(state.message_id)

    async def _fire_retry(self, state: _TrackedState, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000)
        # The timer is spent; clearing it later must not cancel the attempt.
        state.timer = None
        if state.token.cancelled or not self._is_current(state):
            return
        state.retry_count += 1
        state.status = RetryStatus.RUNNING
        state.next_retry_at = None
        self._emit(state.message_id)
        await self._run_attempt(state)


__all__ = ["AttemptOutcome", "RetryOrchestrator"]
