# src/todo_timer/core/state.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from ..owner import OwnerIdentity
from ..services.backup import BackupService
from ..services.task_service import TaskService
from ..services.timer_service import TimerCoordinator
from ..store.live_query import LiveQueryEngine, Subscription
from ..store.todo_store import TodoStore
from .ports import Clock


@dataclass
class AppState:
    # Settings object (config.Settings or a test stand-in).
    settings: Any

    store: TodoStore
    engine: LiveQueryEngine
    identity: OwnerIdentity
    tasks: TaskService
    timer: TimerCoordinator
    backup: BackupService

    # None until onboarding (or an import) sets it.
    owner_id: str | None = None

    # Current list view of the console.
    status_filter: str = "all"
    search: str = ""
    page: int = 1

    subscriptions: list[Subscription] = field(default_factory=list)

    # Same clock the store and the timer use.
    clock: Clock = time.time

    def drop_subscriptions(self) -> None:
        for sub in self.subscriptions:
            sub.unsubscribe()
        self.subscriptions.clear()
