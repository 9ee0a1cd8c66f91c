"""Per-message retry orchestration for prompt discovery."""

from .cancellation import CancellationToken
from .events import StateChangeRegistry
from .notifications import LogfireNotifier, describe_retry_state, render_message
from .protocols import ChatContext, Notifier, PromptInserter, SessionStarter
from .retry_orchestrator import AttemptOutcome, RetryOrchestrator

__all__ = [
    "AttemptOutcome",
    "CancellationToken",
    "ChatContext",
    "LogfireNotifier",
    "Notifier",
    "PromptInserter",
    "RetryOrchestrator",
    "SessionStarter",
    "StateChangeRegistry",
    "describe_retry_state",
    "render_message",
]
