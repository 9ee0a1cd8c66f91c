# SPDX-License-Identifier: MIT
"""Command-line interface for prompt discovery and queue estimates."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Coroutine, Sequence

import logfire

from generation.insertion import AnchorPromptInserter
from generation.invoker import GenerationInvoker
from generation.markers import extract_image_prompts
from io_utils.chat_store import JsonlChatStore
from io_utils.loader import configure_prompt_dir, load_system_template
from llm.upstream import PydanticAIUpstream
from models import QueueTimingSnapshot, RetryStatus
from observability import telemetry
from observability.monitoring import init_logfire
from orchestration.notifications import LogfireNotifier, describe_retry_state
from orchestration.retry_orchestrator import RetryOrchestrator
from runtime.environment import RuntimeEnv
from runtime.settings import Settings, load_settings
from utils.time_utils import estimate_from_snapshot, format_duration_clock

LOG_LEVELS = ["fatal", "error", "warn", "notice", "info", "debug", "trace"]

TERMINAL_STATUSES = (RetryStatus.FAILED, RetryStatus.CANCELLED)

# Module logger for CLI diagnostics mirroring
logger = logging.getLogger(__name__)


def _print_version() -> None:
    """Print the installed package version."""
    try:
        pkg_version = version("prompt-discovery")
    except PackageNotFoundError:  # pragma: no cover - fallback for editable installs
        pkg_version = "unknown"
    line = f"prompt-discovery {pkg_version}"
    print(line)
    logger.info(line)


def _configure_logging(args: argparse.Namespace, settings: Settings) -> None:
    """Configure Logfire based on verbosity flags."""
    index = 2 + args.verbose - args.quiet
    index = max(0, min(len(LOG_LEVELS) - 1, index))
    init_logfire(
        settings.logfire_token,
        LOG_LEVELS[index],  # type: ignore[arg-type]
        diagnostics=settings.diagnostics,
    )


class PrintingSessionStarter:
    """Session starter that prints the prompts it would hand to an image queue."""

    def __init__(self, store: JsonlChatStore, patterns: Sequence[str]) -> None:
        self._store = store
        self._patterns = list(patterns)
        self.started: set[int] = set()

    def has_session(self, message_id: int) -> bool:
        return message_id in self.started

    async def start_session(self, message_id: int) -> None:
        self.started.add(message_id)
        message = self._store.get_message(message_id)
        prompts = extract_image_prompts(message.text if message else "", self._patterns)
        logfire.info("Image session started", message_id=message_id, prompts=len(prompts))
        for prompt in prompts:
            print(f"prompt: {prompt}")


def build_orchestrator(
    settings: Settings,
    store: JsonlChatStore,
    upstream: Any,
    system_template: str,
) -> tuple[RetryOrchestrator, PrintingSessionStarter]:
    """Wire a :class:`RetryOrchestrator` over ``store`` and ``upstream``."""
    options = settings.generation
    invoker = GenerationInvoker(
        upstream, system_template, request_timeout=settings.request_timeout
    )
    sessions = PrintingSessionStarter(store, options.prompt_detection_patterns)
    orchestrator = RetryOrchestrator(
        invoker,
        context_provider=lambda: store,
        session_starter=sessions,
        inserter=AnchorPromptInserter(options.prompt_detection_patterns[0]),
        options=options,
        notifier=LogfireNotifier(),
        retry_delays_ms=settings.retry_delays_ms,
    )
    return orchestrator, sessions


async def discover(
    orchestrator: RetryOrchestrator, message_id: int, *, manual: bool = False
) -> int:
    """Run prompt discovery for ``message_id`` until it settles.

    Returns:
        ``0`` when the message ends with prompts or needs none, ``1`` when
        retries were exhausted or cancelled.
    """
    settled = asyncio.Event()

    def _on_change(changed_id: int) -> None:
        if changed_id != message_id:
            return
        state = orchestrator.get_state(message_id)
        if state is None or state.status in TERMINAL_STATUSES:
            settled.set()
        elif state.status is RetryStatus.SCHEDULED:
            print(describe_retry_state(state))

    unsubscribe = orchestrator.subscribe(_on_change)
    try:
        await orchestrator.request_generation(message_id, manual=manual)
        # A manual restart emits "cancelled" for the state it replaces.
        settled.clear()
        state = orchestrator.get_state(message_id)
        if state is not None and state.status not in TERMINAL_STATUSES:
            await settled.wait()
    finally:
        unsubscribe()

    state = orchestrator.get_state(message_id)
    if state is None:
        return 0
    print(describe_retry_state(state))
    return 1


async def _cmd_discover(args: argparse.Namespace, settings: Settings) -> int:
    """Discover prompts for one message of a JSONL transcript."""
    store = JsonlChatStore.load(Path(args.chat))
    if store.get_message(args.message_id) is None:
        print(f"Message {args.message_id} not found in {args.chat}", file=sys.stderr)
        return 2
    upstream = PydanticAIUpstream(settings.model)
    orchestrator, _ = build_orchestrator(
        settings, store, upstream, load_system_template()
    )
    try:
        return await discover(orchestrator, args.message_id, manual=args.manual)
    finally:
        await orchestrator.aclose()
        await store.flush()


def _cmd_eta(args: argparse.Namespace) -> int:
    """Print the remaining queue estimate as a clock string."""
    snapshot = QueueTimingSnapshot(
        pending_count=args.pending,
        cooldown_remaining_ms=args.cooldown_ms,
        average_generation_duration_ms=args.average_ms,
        min_generation_interval_ms=args.interval_ms,
        max_concurrent=args.concurrency,
    )
    eta = estimate_from_snapshot(snapshot)
    print("unknown" if eta is None else format_duration_clock(eta))
    return 0


def _cmd_clock(args: argparse.Namespace) -> int:
    """Print a millisecond duration as a clock string."""
    print(format_duration_clock(args.ms))
    return 0


def _add_common_args(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Add options shared by commands that talk to the model."""
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Chat model name. Can also be set via the PD_MODEL env variable.",
    )
    parser.add_argument(
        "--prompt-dir",
        type=str,
        default=None,
        help="Directory containing the prompt_generation.md template",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable)",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (repeatable)",
    )
    return parser


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser configured with subcommands."""
    parser = argparse.ArgumentParser(
        description=(
            "Discover image prompts for chat messages with retry and backoff, "
            "and estimate image queue completion time."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the prompt-discovery version and exit.",
    )
    common = _add_common_args(
        argparse.ArgumentParser(
            add_help=False, formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
    )
    subparsers = parser.add_subparsers(dest="command")

    disc = subparsers.add_parser(
        "discover",
        parents=[common],
        help="Insert image prompts into one message of a JSONL transcript",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    disc.add_argument("--chat", required=True, help="Path to the transcript JSONL")
    disc.add_argument(
        "--message-id", type=int, required=True, help="Zero-based message index"
    )
    disc.add_argument(
        "--manual",
        action="store_true",
        help="Restart even when a previous attempt failed or was cancelled",
    )

    eta = subparsers.add_parser(
        "eta",
        help="Estimate the remaining image queue time",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    eta.add_argument("--pending", type=float, required=True, help="Pending items")
    eta.add_argument("--cooldown-ms", type=float, default=0, help="Remaining cooldown")
    eta.add_argument(
        "--average-ms",
        type=float,
        default=None,
        help="Average generation duration; omit when unknown",
    )
    eta.add_argument(
        "--interval-ms", type=float, default=0, help="Minimum gap between items"
    )
    eta.add_argument("--concurrency", type=float, default=1, help="Concurrent slots")

    clock = subparsers.add_parser("clock", help="Format milliseconds as a clock")
    clock.add_argument("ms", type=float, help="Duration in milliseconds")
    return parser


def _apply_args_to_settings(args: argparse.Namespace, settings: Settings) -> None:
    """Override settings fields based on CLI arguments."""
    if args.model is not None:
        settings.model = args.model
    if args.prompt_dir is not None:
        settings.prompt_dir = Path(args.prompt_dir)


def _run_async_with_signals(coro: Coroutine[Any, Any, Any]) -> Any:
    """Execute ``coro`` and cancel on SIGINT or SIGTERM."""

    async def _runner() -> Any:
        loop = asyncio.get_running_loop()
        task = asyncio.create_task(coro)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, task.cancel)
        try:
            return await task
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    return asyncio.run(_runner())


def _execute_discover(args: argparse.Namespace, settings: Settings) -> int:
    """Initialise runtime and run the discover command."""
    RuntimeEnv.initialize(settings)
    configure_prompt_dir(settings.prompt_dir)
    _configure_logging(args, settings)
    telemetry.reset()
    try:
        return _run_async_with_signals(_cmd_discover(args, settings))
    finally:
        telemetry.print_summary()
        logfire.force_flush()


def main(argv: Sequence[str] | None = None) -> None:
    """Parse arguments and dispatch to the requested subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.version:
        _print_version()
        return
    if args.command is None:
        parser.print_help()
        raise SystemExit(1)
    if args.command == "clock":
        raise SystemExit(_cmd_clock(args))
    if args.command == "eta":
        raise SystemExit(_cmd_eta(args))
    settings = load_settings(args.config)
    _apply_args_to_settings(args, settings)
    raise SystemExit(_execute_discover(args, settings))


if __name__ == "__main__":
    # Allow module to be executed as a standalone script
    main()
