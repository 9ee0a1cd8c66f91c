# SPDX-License-Identifier: MIT
"""Test configuration for prompt-discovery.

Keeps logfire local, isolates the runtime environment and resets telemetry
counters between tests.
"""

from __future__ import annotations

from typing import Any, Sequence

import logfire
import pytest

from models import ChatTurn
from utils import LoggingErrorHandler

logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Strip ``PD_`` variables so local shells do not leak into tests."""
    import os

    for key in list(os.environ):
        if key.startswith("PD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _init_runtime_env(_isolate_env):
    """Initialise a default runtime environment for tests."""
    from io_utils import loader
    from runtime.environment import RuntimeEnv
    from runtime.settings import load_settings

    RuntimeEnv.reset()
    loader.load_app_config.cache_clear()
    RuntimeEnv.initialize(load_settings())
    loader.clear_prompt_cache()
    yield
    loader.clear_prompt_cache()
    RuntimeEnv.reset()


@pytest.fixture(autouse=True)
def _reset_telemetry():
    from observability import telemetry

    telemetry.reset()
    yield
    telemetry.reset()


class FakeChat:
    """In-memory :class:`~orchestration.protocols.ChatContext`."""

    def __init__(self, turns: Sequence[ChatTurn]) -> None:
        self.turns = list(turns)
        self.saves = 0

    def get_message(self, message_id: int) -> ChatTurn | None:
        if 0 <= message_id < len(self.turns):
            return self.turns[message_id]
        return None

    def history_before(self, message_id: int, limit: int) -> list[ChatTurn]:
        return self.turns[max(0, message_id - limit) : message_id]

    def update_message_text(self, message_id: int, text: str) -> None:
        self.turns[message_id] = self.turns[message_id].model_copy(
            update={"text": text}
        )

    async def save(self) -> None:
        self.saves += 1


class FakeSessions:
    """Session starter recording every start request."""

    def __init__(self, *, fail: bool = False) -> None:
        self.started: list[int] = []
        self.fail = fail

    def has_session(self, message_id: int) -> bool:
        return message_id in self.started

    async def start_session(self, message_id: int) -> None:
        if self.fail:
            raise RuntimeError("image queue offline")
        self.started.append(message_id)


class CollectingErrorHandler(LoggingErrorHandler):
    """Log like the default handler and keep every report for assertions."""

    def __init__(self) -> None:
        self.errors: list[tuple[str, Exception | None]] = []

    def handle(self, message: str, exc: Exception | None = None) -> None:
        self.errors.append((message, exc))
        super().handle(message, exc)


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, key: str, **params: Any) -> None:
        self.calls.append(("info", key, params))

    def warning(self, key: str, **params: Any) -> None:
        self.calls.append(("warning", key, params))

    def keys(self) -> list[str]:
        return [key for _, key, _ in self.calls]


@pytest.fixture()
def chat() -> FakeChat:
    return FakeChat(
        [
            ChatTurn(name="User", is_user=True, text="Tell me about the harbour."),
            ChatTurn(
                name="Narrator",
                is_user=False,
                text="The old lighthouse stood above the harbour. Gulls circled the masts.",
            ),
        ]
    )


@pytest.fixture()
def sessions() -> FakeSessions:
    return FakeSessions()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
