# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from fakes import FakeClock

from todo_timer.core.locks import OwnerLocks
from todo_timer.core.state import AppState
from todo_timer.owner import OwnerIdentity
from todo_timer.services.backup import BackupService
from todo_timer.services.task_service import TaskService
from todo_timer.services.timer_service import TimerCoordinator
from todo_timer.store.live_query import LiveQueryEngine
from todo_timer.store.todo_store import TodoStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the services.

    A SimpleNamespace rather than config.Settings keeps tests away from
    the environment and any local .env file.
    """
    data_dir = tmp_path / "data"
    return SimpleNamespace(
        app_name="todo-timer-test",
        log_level="DEBUG",
        data_dir=data_dir,
        db_path=data_dir / "todo_timer.sqlite3",
        owner_file=data_dir / "owner.txt",
        backup_dir=tmp_path / "backups",
        page_size=10,
        tick_interval=0.05,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def locks() -> OwnerLocks:
    return OwnerLocks()


@pytest.fixture()
def engine() -> LiveQueryEngine:
    return LiveQueryEngine()


@pytest.fixture()
def store(settings: SimpleNamespace, engine: LiveQueryEngine, clock: FakeClock) -> TodoStore:
    return TodoStore(settings.db_path, listener=engine, clock=clock)


@pytest.fixture()
def identity(settings: SimpleNamespace) -> OwnerIdentity:
    return OwnerIdentity(settings.owner_file)


@pytest.fixture()
def tasks(store: TodoStore, locks: OwnerLocks) -> TaskService:
    return TaskService(store, locks=locks)


@pytest.fixture()
def timer(store: TodoStore, clock: FakeClock, locks: OwnerLocks) -> TimerCoordinator:
    return TimerCoordinator(store, clock=clock, locks=locks)


@pytest.fixture()
def backup(
    store: TodoStore,
    identity: OwnerIdentity,
    engine: LiveQueryEngine,
    clock: FakeClock,
    locks: OwnerLocks,
) -> BackupService:
    return BackupService(store, identity, engine=engine, clock=clock, locks=locks)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    store: TodoStore,
    engine: LiveQueryEngine,
    identity: OwnerIdentity,
    tasks: TaskService,
    timer: TimerCoordinator,
    backup: BackupService,
    clock: FakeClock,
) -> AppState:
    """
    AppState wired to a real SQLite store in tmp_path.

    The store is not faked: persistence and cascades are part of what the
    command tests check.
    """
    return AppState(
        settings=settings,
        store=store,
        engine=engine,
        identity=identity,
        tasks=tasks,
        timer=timer,
        backup=backup,
        owner_id="ann",
        clock=clock,
    )
