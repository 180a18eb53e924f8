# src/todo_timer/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, the live query engine and the services into AppState,
- registers the live views the console prints.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ..config import get_settings
from ..core.locks import OwnerLocks
from ..core.ports import Clock
from ..core.state import AppState
from ..owner import OwnerIdentity
from ..services import views
from ..services.backup import BackupService
from ..services.task_service import TaskService
from ..services.timer_service import TimerCoordinator
from ..store.live_query import LiveQueryEngine
from ..store.models import Collection
from ..store.todo_store import TodoStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.owner_file.parent.mkdir(parents=True, exist_ok=True)
    settings.backup_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, clock: Clock = time.time) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    engine = LiveQueryEngine()
    store = TodoStore(settings.db_path, listener=engine, clock=clock)
    identity = OwnerIdentity(settings.owner_file)
    # one lock registry: every sequence changing an owner's data serialises on it
    locks = OwnerLocks()

    return AppState(
        settings=settings,
        store=store,
        engine=engine,
        identity=identity,
        tasks=TaskService(store, locks=locks),
        timer=TimerCoordinator(store, clock=clock, locks=locks),
        backup=BackupService(store, identity, engine=engine, clock=clock, locks=locks),
        owner_id=identity.load(),
        clock=clock,
    )


def watch_owner(state: AppState, emit: Callable[[str], None]) -> None:
    """
    Subscribe the console to the owner's live views.

    - running session: announced when it starts or stops
    - today's total: printed whenever a session record lands or goes away
    """
    state.drop_subscriptions()
    owner = state.owner_id
    if not owner:
        return

    def running() -> tuple[int, str] | None:
        session = state.store.get_active_session(owner)
        return None if session is None else (session.task_id, session.task_title)

    def on_running(value: tuple[int, str] | None) -> None:
        if value is None:
            emit("[TIMER] Stopped.")
        else:
            emit(f"[TIMER] Running: {value[1]}")

    def today_total() -> int:
        records = state.store.list_records(owner)
        return views.total_duration(views.records_on(records, views.today(state.clock())))

    def on_total(total: int) -> None:
        emit(f"[TODAY] Total time: {views.format_duration(total)}")

    state.subscriptions.append(
        state.engine.subscribe(running, [Collection.ACTIVE_SESSIONS], on_running)
    )
    state.subscriptions.append(
        state.engine.subscribe(today_total, [Collection.SESSION_RECORDS], on_total)
    )
    logger.debug("Watching owner=%s subscriptions=%d", owner, len(state.subscriptions))
