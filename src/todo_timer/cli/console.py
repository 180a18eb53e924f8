# src/todo_timer/cli/console.py

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime

from ..core.errors import StoreError, ValidationError
from ..core.state import AppState
from ..services import views
from .bootstrap import watch_owner
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


async def _read_line(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


async def onboard(state: AppState) -> bool:
    """
    Ask for a user name (or a backup to import) until we have an owner.
    Returns False if the user left instead.
    """
    while not state.owner_id:
        try:
            line = await _read_line("What's your name? (or /import <backup.json>) ")
        except (EOFError, KeyboardInterrupt):
            return False
        if not line:
            continue
        if line.lower() in ("/exit", "/quit"):
            return False
        try:
            if line.startswith("/import"):
                reply = await command_registry.handle(state, line, emit=_print_ts)
                if reply:
                    _print_ts(reply)
                continue
            state.owner_id = state.identity.save(line)
        except ValidationError as exc:
            _print_ts(f"[ERROR] {exc}")
        except StoreError as exc:
            logger.exception("Store failure during onboarding on %r", line)
            _print_ts(f"[ERROR] Could not save: {exc}. Nothing was changed.")
    return True


async def _restart_ticker(state: AppState, ticker: asyncio.Task | None) -> asyncio.Task | None:
    if ticker is not None:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker
    if not state.owner_id:
        return None
    interval = float(getattr(state.settings, "tick_interval", 1.0))
    return asyncio.create_task(state.timer.run_ticker(state.owner_id, interval_seconds=interval))


async def run_console_loop(state: AppState) -> None:
    state.engine.bind_loop()
    logger.info("Console started db=%s", state.store.db_path)

    ticker: asyncio.Task | None = None
    try:
        while True:
            if not state.owner_id:
                if not await onboard(state):
                    break
            owner = state.owner_id
            assert owner is not None

            resumed = await state.timer.recover(owner)
            watch_owner(state, _print_ts)
            ticker = await _restart_ticker(state, ticker)

            _print_ts(f"{views.greeting(datetime.now().hour)}, {owner}! Use /help for commands, /exit to quit.")
            if resumed is not None:
                _print_ts(f"[TIMER] Still running: {resumed.task_title}")

            if not await _command_loop(state):
                break
            # owner changed (import) or was reset: go around again
    finally:
        if ticker is not None:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
        state.drop_subscriptions()
        logger.info("Console stopped.")


async def _command_loop(state: AppState) -> bool:
    """Returns False on exit, True when the owner changed."""
    owner = state.owner_id
    while True:
        try:
            user_input = await _read_line(">>> ")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            return False
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            return False

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            return False

        if not user_input.startswith("/"):
            user_input = "/add " + user_input

        try:
            reply = await command_registry.handle(state, user_input, emit=_print_ts)
        except ValidationError as exc:
            reply = f"[ERROR] {exc}"
        except StoreError as exc:
            logger.exception("Store failure on %r", user_input)
            reply = f"[ERROR] Could not save: {exc}. Nothing was changed."
        except Exception:
            logger.exception("Command failed: %r", user_input)
            reply = "[ERROR] Something went wrong (see log)."

        if reply:
            _print_ts(reply)

        if state.owner_id != owner:
            return True
