# src/todo_timer/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the console loop
(with the stopwatch ticker as a background task) until the user exits.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..logging_setup import setup_logging
from .console import run_console_loop

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.drop_subscriptions()
        state.engine.close()
    except Exception:
        logger.debug("Live query shutdown failed.", exc_info=True)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/todo_timer")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "todo-timer"))

    # reuse the same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(run_console_loop(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        # TodoStore uses short-lived sqlite connections per call; nothing to close there.
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
