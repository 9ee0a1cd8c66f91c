# SPDX-License-Identifier: MIT
"""Tests for the per-message retry state machine."""

from __future__ import annotations

import asyncio
from typing import Iterable

import pytest

from conftest import (
    CollectingErrorHandler,
    FakeChat,
    FakeSessions,
    RecordingNotifier,
)
from generation.insertion import AnchorPromptInserter
from models import (
    GenerationAttemptResult,
    GenerationErrorType,
    GenerationStatus,
    PromptSuggestion,
    RetryStatus,
)
from observability import telemetry
from orchestration.retry_orchestrator import RetryOrchestrator

MESSAGE_ID = 1
FAST_DELAYS = (5, 5, 5)


def _success(after: str = "the harbour.", before: str = "Gulls") -> GenerationAttemptResult:
    return GenerationAttemptResult(
        status=GenerationStatus.SUCCESS,
        suggestions=[
            PromptSuggestion(text="lighthouse", insert_after=after, insert_before=before)
        ],
    )


def _error(message: str = "messages: 502") -> GenerationAttemptResult:
    return GenerationAttemptResult(
        status=GenerationStatus.ERROR,
        error_type=GenerationErrorType.CALL_FAILED,
        error_message=message,
    )


NO_PROMPTS = GenerationAttemptResult(status=GenerationStatus.NO_PROMPTS)


class FakeInvoker:
    """Invoker returning scripted results; the last result repeats."""

    def __init__(self, results: Iterable[GenerationAttemptResult]) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, list]] = []
        self.gate: asyncio.Event | None = None

    async def generate(self, message_text, history, options):
        self.calls.append((message_text, list(history)))
        if self.gate is not None:
            await self.gate.wait()
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def _orchestrator(
    invoker: FakeInvoker,
    chat: FakeChat | None,
    sessions: FakeSessions,
    notifier: RecordingNotifier,
    **kwargs,
) -> RetryOrchestrator:
    kwargs.setdefault("retry_delays_ms", FAST_DELAYS)
    kwargs.setdefault("inserter", AnchorPromptInserter())
    return RetryOrchestrator(
        invoker,  # type: ignore[arg-type]
        context_provider=lambda: chat,
        session_starter=sessions,
        notifier=notifier,
        **kwargs,
    )


async def _wait_for(
    orchestrator: RetryOrchestrator,
    predicate,
    timeout: float = 2.0,
) -> None:
    """Wait until ``predicate(state)`` holds for ``MESSAGE_ID``."""
    done = asyncio.Event()

    def _check(_: int) -> None:
        if predicate(orchestrator.get_state(MESSAGE_ID)):
            done.set()

    unsubscribe = orchestrator.subscribe(_check)
    try:
        _check(MESSAGE_ID)
        await asyncio.wait_for(done.wait(), timeout)
    finally:
        unsubscribe()


@pytest.mark.asyncio()
async def test_success_inserts_saves_and_hands_off(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_success()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)

    assert orchestrator.get_state(MESSAGE_ID) is None
    assert '<!--img-prompt="lighthouse"-->' in chat.turns[MESSAGE_ID].text
    assert chat.saves == 1
    assert sessions.started == [MESSAGE_ID]
    assert invoker.calls[0][0].startswith("The old lighthouse")
    assert [turn.text for turn in invoker.calls[0][1]] == ["Tell me about the harbour."]
    assert telemetry.snapshot().outcomes["success"] == 1


@pytest.mark.asyncio()
async def test_no_prompts_removes_state_without_hand_off(chat, sessions, notifier) -> None:
    original = chat.turns[MESSAGE_ID].text
    orchestrator = _orchestrator(FakeInvoker([NO_PROMPTS]), chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)

    assert orchestrator.get_state(MESSAGE_ID) is None
    assert chat.turns[MESSAGE_ID].text == original
    assert sessions.started == []
    assert chat.saves == 0


@pytest.mark.asyncio()
async def test_existing_prompts_short_circuit(chat, sessions, notifier) -> None:
    chat.update_message_text(MESSAGE_ID, 'Text <!--img-prompt="boat"--> here')
    invoker = FakeInvoker([_success()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)

    assert invoker.calls == []
    assert sessions.started == [MESSAGE_ID]
    assert orchestrator.get_state(MESSAGE_ID) is None


@pytest.mark.asyncio()
async def test_hand_off_skipped_when_session_exists(chat, notifier) -> None:
    sessions = FakeSessions()
    sessions.started.append(MESSAGE_ID)
    orchestrator = _orchestrator(FakeInvoker([_success()]), chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)
    assert sessions.started == [MESSAGE_ID]


@pytest.mark.asyncio()
async def test_hand_off_failure_is_logged_and_text_kept(chat, notifier) -> None:
    handler = CollectingErrorHandler()
    orchestrator = _orchestrator(
        FakeInvoker([_success()]),
        chat,
        FakeSessions(fail=True),
        notifier,
        error_handler=handler,
    )
    await orchestrator.request_generation(MESSAGE_ID)

    assert orchestrator.get_state(MESSAGE_ID) is None
    assert "img-prompt" in chat.turns[MESSAGE_ID].text
    assert len(handler.errors) == 1
    assert "image generation session" in handler.errors[0][0]


@pytest.mark.asyncio()
async def test_error_schedules_retry(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(
        invoker,
        chat,
        sessions,
        notifier,
        retry_delays_ms=(5000, 10000, 20000),
        clock=lambda: 1_000.0,
    )
    await orchestrator.request_generation(MESSAGE_ID)

    state = orchestrator.get_state(MESSAGE_ID)
    assert state is not None
    assert state.status is RetryStatus.SCHEDULED
    assert state.retry_count == 0
    assert state.max_retries == 3
    assert state.next_retry_at == 6_000.0
    assert state.last_error_type == "call-failed"
    assert state.last_error_message == "messages: 502"
    assert notifier.calls[-1] == (
        "warning",
        "prompt_retrying",
        {"message_id": MESSAGE_ID, "seconds": 5, "attempt": 1, "total": 3},
    )
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_retry_table_exhaustion_fails(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(
        orchestrator, lambda s: s is not None and s.status is RetryStatus.FAILED
    )

    state = orchestrator.get_state(MESSAGE_ID)
    assert state is not None
    assert state.retry_count == 3
    assert state.next_retry_at is None
    assert len(invoker.calls) == 4
    assert notifier.keys().count("prompt_retrying") == 3
    assert notifier.keys()[-1] == "prompt_retry_failed"
    assert telemetry.snapshot().retries_scheduled == 3

    # Terminal state stays put and nothing fires later.
    await asyncio.sleep(0.05)
    assert len(invoker.calls) == 4


@pytest.mark.asyncio()
async def test_retry_then_success(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error(), _success()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(orchestrator, lambda s: s is None)

    assert len(invoker.calls) == 2
    assert sessions.started == [MESSAGE_ID]


@pytest.mark.asyncio()
async def test_cancel_during_scheduled_wait_stops_attempts(
    chat, sessions, notifier
) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, notifier, retry_delays_ms=(30,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    orchestrator.cancel_retries(MESSAGE_ID)

    state = orchestrator.get_state(MESSAGE_ID)
    assert state is not None
    assert state.status is RetryStatus.CANCELLED
    assert state.next_retry_at is None
    assert notifier.keys()[-1] == "prompt_retry_cancelled"

    await asyncio.sleep(0.1)
    assert len(invoker.calls) == 1


@pytest.mark.asyncio()
async def test_silent_cancel_skips_notification(chat, sessions, notifier) -> None:
    orchestrator = _orchestrator(
        FakeInvoker([_error()]), chat, sessions, notifier, retry_delays_ms=(1000,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    orchestrator.cancel_retries(MESSAGE_ID, silent=True)
    assert "prompt_retry_cancelled" not in notifier.keys()
    assert orchestrator.get_state(MESSAGE_ID).status is RetryStatus.CANCELLED


@pytest.mark.asyncio()
async def test_cancel_unknown_message_is_noop(chat, sessions, notifier) -> None:
    orchestrator = _orchestrator(FakeInvoker([_error()]), chat, sessions, notifier)
    orchestrator.cancel_retries(99)
    assert notifier.calls == []


@pytest.mark.asyncio()
async def test_cancellation_mid_attempt_has_no_side_effects(
    chat, sessions, notifier
) -> None:
    original = chat.turns[MESSAGE_ID].text
    invoker = FakeInvoker([_success()])
    invoker.gate = asyncio.Event()
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)

    task = asyncio.create_task(orchestrator.request_generation(MESSAGE_ID))
    await asyncio.sleep(0)
    assert orchestrator.get_state(MESSAGE_ID).status is RetryStatus.RUNNING
    orchestrator.cancel_retries(MESSAGE_ID)
    invoker.gate.set()
    await task

    assert chat.turns[MESSAGE_ID].text == original
    assert chat.saves == 0
    assert sessions.started == []
    state = orchestrator.get_state(MESSAGE_ID)
    assert state.status is RetryStatus.CANCELLED
    assert state.last_error_type is None


@pytest.mark.asyncio()
async def test_duplicate_request_is_noop_while_running(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_success()])
    invoker.gate = asyncio.Event()
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)

    first = asyncio.create_task(orchestrator.request_generation(MESSAGE_ID))
    await asyncio.sleep(0)
    await orchestrator.request_generation(MESSAGE_ID)
    assert len(invoker.calls) == 1

    invoker.gate.set()
    await first
    assert sessions.started == [MESSAGE_ID]


@pytest.mark.asyncio()
async def test_duplicate_request_is_noop_while_scheduled(
    chat, sessions, notifier
) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, notifier, retry_delays_ms=(1000,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    await orchestrator.request_generation(MESSAGE_ID)
    assert len(invoker.calls) == 1
    assert orchestrator.get_state(MESSAGE_ID).status is RetryStatus.SCHEDULED
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_manual_request_restarts_running_attempt(
    chat, sessions, notifier
) -> None:
    invoker = FakeInvoker([_success(), _success()])
    invoker.gate = asyncio.Event()
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)

    first = asyncio.create_task(orchestrator.request_generation(MESSAGE_ID))
    await asyncio.sleep(0)
    second = asyncio.create_task(
        orchestrator.request_generation(MESSAGE_ID, manual=True)
    )
    await asyncio.sleep(0)
    assert len(invoker.calls) == 2
    assert "prompt_retry_cancelled" not in notifier.keys()

    invoker.gate.set()
    await asyncio.gather(first, second)

    text = chat.turns[MESSAGE_ID].text
    assert text.count("img-prompt") == 1
    assert sessions.started == [MESSAGE_ID]
    assert orchestrator.get_state(MESSAGE_ID) is None


@pytest.mark.asyncio()
async def test_manual_request_replaces_scheduled_timer(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error(), _success()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, notifier, retry_delays_ms=(40,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    await orchestrator.request_generation(MESSAGE_ID, manual=True)
    assert orchestrator.get_state(MESSAGE_ID) is None

    # The replaced timer must not fire a third attempt.
    await asyncio.sleep(0.1)
    assert len(invoker.calls) == 2


@pytest.mark.asyncio()
async def test_failed_state_needs_manual_restart(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier, retry_delays_ms=(1,))
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(
        orchestrator, lambda s: s is not None and s.status is RetryStatus.FAILED
    )
    assert len(invoker.calls) == 2

    await orchestrator.request_generation(MESSAGE_ID)
    assert len(invoker.calls) == 2

    invoker.results = [_success()]
    await orchestrator.request_generation(MESSAGE_ID, manual=True)
    assert len(invoker.calls) == 3
    assert orchestrator.get_state(MESSAGE_ID) is None


@pytest.mark.asyncio()
async def test_manual_restart_resets_retry_count(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier, retry_delays_ms=(1,))
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(
        orchestrator, lambda s: s is not None and s.status is RetryStatus.FAILED
    )
    assert orchestrator.get_state(MESSAGE_ID).retry_count == 1

    invoker.results = [_error()]
    await orchestrator.request_generation(MESSAGE_ID, manual=True)
    state = orchestrator.get_state(MESSAGE_ID)
    assert state.status is RetryStatus.SCHEDULED
    assert state.retry_count == 0
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_cancel_all_clears_table(chat, sessions, notifier) -> None:
    chat.turns.append(chat.turns[MESSAGE_ID].model_copy())
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, notifier, retry_delays_ms=(30,)
    )
    await orchestrator.request_generation(1)
    await orchestrator.request_generation(2)
    assert sorted(orchestrator.tracked_ids()) == [1, 2]

    orchestrator.cancel_all()
    assert orchestrator.tracked_ids() == []
    assert orchestrator.get_state(1) is None
    assert "prompt_retry_cancelled" not in notifier.keys()

    await asyncio.sleep(0.1)
    assert len(invoker.calls) == 2


@pytest.mark.asyncio()
async def test_subscribe_receives_every_transition(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error(), _success()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    seen: list[RetryStatus | None] = []

    def listener(message_id: int) -> None:
        state = orchestrator.get_state(message_id)
        seen.append(state.status if state else None)

    unsubscribe = orchestrator.subscribe(listener)
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(orchestrator, lambda s: s is None)
    unsubscribe()

    assert seen == [
        RetryStatus.RUNNING,
        RetryStatus.SCHEDULED,
        RetryStatus.RUNNING,
        None,
    ]

    count = len(seen)
    await orchestrator.request_generation(MESSAGE_ID, manual=True)
    assert len(seen) == count


@pytest.mark.asyncio()
async def test_failing_listener_does_not_break_delivery(chat, sessions, notifier) -> None:
    handler = CollectingErrorHandler()
    from orchestration.events import StateChangeRegistry

    registry = StateChangeRegistry(handler)
    orchestrator = _orchestrator(
        FakeInvoker([NO_PROMPTS]), chat, sessions, notifier, registry=registry
    )
    received: list[int] = []

    def broken(_: int) -> None:
        raise RuntimeError("listener exploded")

    orchestrator.subscribe(broken)
    orchestrator.subscribe(received.append)
    await orchestrator.request_generation(MESSAGE_ID)

    assert received == [MESSAGE_ID, MESSAGE_ID]
    assert len(handler.errors) == 2


@pytest.mark.asyncio()
async def test_insertion_failure_is_retried(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_success(after="nowhere", before="nothing")])
    orchestrator = _orchestrator(
        invoker,
        chat,
        sessions,
        notifier,
        inserter=AnchorPromptInserter(append_unmatched=False),
        retry_delays_ms=(1000,),
    )
    await orchestrator.request_generation(MESSAGE_ID)
    state = orchestrator.get_state(MESSAGE_ID)
    assert state.status is RetryStatus.SCHEDULED
    assert state.last_error_type == "insertion-failed"
    assert chat.saves == 0
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_collaborator_exception_becomes_attempt_failed(
    chat, sessions, notifier
) -> None:
    class ExplodingInserter:
        def insert(self, text, suggestions):
            raise ValueError("anchor index corrupt")

    handler = CollectingErrorHandler()
    orchestrator = _orchestrator(
        FakeInvoker([_success()]),
        chat,
        sessions,
        notifier,
        inserter=ExplodingInserter(),
        error_handler=handler,
        retry_delays_ms=(1000,),
    )
    await orchestrator.request_generation(MESSAGE_ID)
    state = orchestrator.get_state(MESSAGE_ID)
    assert state.status is RetryStatus.SCHEDULED
    assert state.last_error_type == "attempt-failed"
    assert state.last_error_message == "anchor index corrupt"
    assert len(handler.errors) == 1
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_missing_context_on_request_does_nothing(sessions, notifier) -> None:
    invoker = FakeInvoker([_success()])
    orchestrator = _orchestrator(invoker, None, sessions, notifier)
    await orchestrator.request_generation(MESSAGE_ID)
    assert invoker.calls == []
    assert orchestrator.get_state(MESSAGE_ID) is None


@pytest.mark.asyncio()
async def test_context_lost_before_retry(chat, sessions, notifier) -> None:
    holder: dict[str, FakeChat | None] = {"chat": chat}
    invoker = FakeInvoker([_error()])
    orchestrator = RetryOrchestrator(
        invoker,  # type: ignore[arg-type]
        context_provider=lambda: holder["chat"],
        session_starter=sessions,
        inserter=AnchorPromptInserter(),
        notifier=notifier,
        retry_delays_ms=(1, 1000),
    )
    await orchestrator.request_generation(MESSAGE_ID)
    holder["chat"] = None
    await _wait_for(
        orchestrator,
        lambda s: s is not None
        and s.retry_count == 1
        and s.status is RetryStatus.SCHEDULED,
    )
    state = orchestrator.get_state(MESSAGE_ID)
    assert state.last_error_type == "context-unavailable"
    assert len(invoker.calls) == 1
    orchestrator.cancel_all()


@pytest.mark.asyncio()
async def test_message_removed_before_retry_cancels(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier, retry_delays_ms=(1,))
    await orchestrator.request_generation(MESSAGE_ID)
    del chat.turns[MESSAGE_ID]
    await _wait_for(
        orchestrator, lambda s: s is not None and s.status is RetryStatus.CANCELLED
    )
    assert len(invoker.calls) == 1


@pytest.mark.asyncio()
async def test_user_messages_are_ignored(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_success()])
    orchestrator = _orchestrator(invoker, chat, sessions, notifier)
    await orchestrator.request_generation(0)
    assert invoker.calls == []
    assert orchestrator.get_state(0) is None


@pytest.mark.asyncio()
async def test_aclose_cancels_pending_timers(chat, sessions, notifier) -> None:
    invoker = FakeInvoker([_error()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, notifier, retry_delays_ms=(10_000,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    await orchestrator.aclose()
    assert orchestrator.tracked_ids() == []


def test_empty_delay_table_is_rejected(chat, sessions, notifier) -> None:
    with pytest.raises(ValueError):
        _orchestrator(FakeInvoker([NO_PROMPTS]), chat, sessions, notifier, retry_delays_ms=())


def test_max_retries_follows_table(chat, sessions, notifier) -> None:
    orchestrator = _orchestrator(
        FakeInvoker([NO_PROMPTS]), chat, sessions, notifier, retry_delays_ms=(1, 2, 3, 4)
    )
    assert orchestrator.max_retries == 4


@pytest.mark.asyncio()
async def test_injected_registry_receives_changes(chat, sessions, notifier) -> None:
    from orchestration.events import StateChangeRegistry

    registry = StateChangeRegistry()
    seen: list[int] = []
    registry.subscribe(seen.append)
    orchestrator = _orchestrator(
        FakeInvoker([NO_PROMPTS]), chat, sessions, notifier, registry=registry
    )
    await orchestrator.request_generation(MESSAGE_ID)
    assert seen == [MESSAGE_ID, MESSAGE_ID]


class ExplodingNotifier:
    def info(self, key, **params):
        raise RuntimeError(f"toast failed: {key}")

    def warning(self, key, **params):
        raise RuntimeError(f"toast failed: {key}")


@pytest.mark.asyncio()
async def test_failing_notifier_still_arms_retry_timer(chat, sessions) -> None:
    handler = CollectingErrorHandler()
    invoker = FakeInvoker([_error(), _success()])
    orchestrator = _orchestrator(
        invoker, chat, sessions, ExplodingNotifier(), error_handler=handler
    )
    await orchestrator.request_generation(MESSAGE_ID)
    assert orchestrator.get_state(MESSAGE_ID).status is RetryStatus.SCHEDULED

    await _wait_for(orchestrator, lambda state: state is None)
    assert len(invoker.calls) == 2
    assert sessions.started == [MESSAGE_ID]
    assert handler.errors[0][0] == "Notifier failed for prompt_retrying"


@pytest.mark.asyncio()
async def test_failing_notifier_on_exhaustion_and_cancel(chat, sessions) -> None:
    handler = CollectingErrorHandler()
    orchestrator = _orchestrator(
        FakeInvoker([_error()]),
        chat,
        sessions,
        ExplodingNotifier(),
        error_handler=handler,
        retry_delays_ms=(1,),
    )
    await orchestrator.request_generation(MESSAGE_ID)
    await _wait_for(
        orchestrator, lambda state: state is not None and state.status is RetryStatus.FAILED
    )
    await orchestrator.request_generation(MESSAGE_ID, manual=True)
    orchestrator.cancel_retries(MESSAGE_ID)

    assert orchestrator.get_state(MESSAGE_ID).status is RetryStatus.CANCELLED
    assert [message for message, _ in handler.errors] == [
        "Notifier failed for prompt_retrying",
        "Notifier failed for prompt_retry_failed",
        "Notifier failed for prompt_retrying",
        "Notifier failed for prompt_retry_cancelled",
    ]


@pytest.mark.asyncio()
async def test_retry_notification_rounds_half_seconds_up(chat, sessions, notifier) -> None:
    orchestrator = _orchestrator(
        FakeInvoker([_error()]), chat, sessions, notifier, retry_delays_ms=(2500,)
    )
    await orchestrator.request_generation(MESSAGE_ID)
    level, key, params = notifier.calls[-1]
    assert (level, key, params["seconds"]) == ("warning", "prompt_retrying", 3)
    orchestrator.cancel_all()
