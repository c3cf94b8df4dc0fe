# src/routinelink/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.events import DomainEvent, EventKind
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except OSError:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def describe_event(event: DomainEvent, current_user: str) -> str | None:
    """One-line notice for events caused by someone else (None = don't show)."""
    if event.actor_id == current_user:
        return None
    p = event.payload
    who = event.actor_id or "system"
    title = (p.get("task") or {}).get("title")
    if event.kind == EventKind.TASK_COMPLETED:
        return f"{who} completed {title!r}"
    if event.kind == EventKind.TASK_CREATED:
        return f"{who} added {title!r}"
    if event.kind == EventKind.TASK_UPDATED and p.get("is_recurring_reset"):
        return f"{title!r} is open again"
    if event.kind == EventKind.STATS_UPDATED and p.get("user_id") != current_user:
        return f"{p.get('user_id')} streak: {p.get('streak')}"
    return None


async def _echo_events(state: AppState) -> None:
    sub = state.bus.subscribe()
    try:
        async for event in sub:
            line = describe_event(event, state.current_user)
            if line:
                _print_ts(f"[LIVE] {line}")
    finally:
        sub.close()


async def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (user=%s).", state.current_user)
    _print_ts("[CONSOLE] Use /help for commands, /as <user> to switch user, /exit to quit.\n")

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    echo = asyncio.create_task(_echo_events(state), name="console-echo")

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, f"{state.current_user}> ")).strip()
                _rewrite_prev_line(f"[{_ts_local()}] {state.current_user}> {user_input}")
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                response = await command_registry.handle(state, user_input, emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                response = "Internal error while handling a command."

            if response is None:
                response = "Commands start with '/'. Use /help to list them."
            print(f"[{_ts_local()}] {response}")
    finally:
        echo.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await echo

    logger.info("Console connector finished.")
