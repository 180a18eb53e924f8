# services/timer_service.py

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from enum import StrEnum

from ..core.errors import StoreError
from ..core.locks import OwnerLocks
from ..core.ports import Clock
from ..store.models import ActiveSession, SessionRecord
from ..store.todo_store import TodoStore

logger = logging.getLogger(__name__)


class TimerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(slots=True, frozen=True)
class TimerStatus:
    owner_id: str
    state: TimerState
    session: ActiveSession | None
    elapsed: int

    @property
    def is_running(self) -> bool:
        return self.state == TimerState.RUNNING


class TimerCoordinator:
    """
    Orchestrates the stopwatch of each owner:
    - at most one in-progress session per owner
    - elapsed time derived from start_time (never counted up)
    - stop turns the in-progress session into a session record

    start/stop/reset_all/recover run under the owner's lock. Pass the lock
    registry TaskService uses, so a task delete cannot land between reading
    a session and writing its record.
    """

    def __init__(
        self, store: TodoStore, *, clock: Clock = time.time, locks: OwnerLocks | None = None
    ) -> None:
        self.store = store
        self._clock = clock
        self._locks = locks if locks is not None else OwnerLocks()

    def _elapsed_since(self, start_time: float) -> int:
        return max(0, math.floor(self._clock() - start_time))

    # ----- Queries -----

    async def status(self, owner_id: str) -> TimerStatus:
        session = await asyncio.to_thread(self.store.get_active_session, owner_id)
        if session is None:
            return TimerStatus(owner_id=owner_id, state=TimerState.IDLE, session=None, elapsed=0)
        return TimerStatus(
            owner_id=owner_id,
            state=TimerState.RUNNING,
            session=session,
            elapsed=self._elapsed_since(session.start_time),
        )

    async def is_running(self, owner_id: str) -> bool:
        return (await self.status(owner_id)).is_running

    # ----- Transitions -----

    async def start(self, owner_id: str, task_id: int) -> ActiveSession | None:
        """
        Idle -> Running for task_id.

        Returns None and changes nothing if the owner is already running,
        or the task is missing, completed or someone else's.
        """
        async with self._locks.hold(owner_id):
            current = await asyncio.to_thread(self.store.get_active_session, owner_id)
            if current is not None:
                logger.info(
                    "Timer start rejected owner=%s: already timing task=%s", owner_id, current.task_id
                )
                return None

            task = await asyncio.to_thread(self.store.get_task, task_id)
            if task is None or task.owner_id != owner_id:
                logger.info("Timer start rejected owner=%s: task %s not found", owner_id, task_id)
                return None
            if task.completed:
                logger.info("Timer start rejected owner=%s: task %s is completed", owner_id, task_id)
                return None

            session_id = await asyncio.to_thread(
                self.store.add_active_session, owner_id, task.id, task.title, self._clock()
            )
            if session_id is None:
                return None
            session = await asyncio.to_thread(self.store.get_active_session, owner_id)

        logger.info("Timer started owner=%s task=%s", owner_id, task_id)
        return session

    async def tick(self, owner_id: str) -> int | None:
        """
        Refresh the displayed elapsed time of the running session.

        Elapsed is recomputed as now - start_time, so missed or late ticks do
        not drift. Returns None when idle.
        """
        session = await asyncio.to_thread(self.store.get_active_session, owner_id)
        if session is None:
            return None
        elapsed = self._elapsed_since(session.start_time)
        if elapsed != session.elapsed:
            await asyncio.to_thread(self.store.update_active_elapsed, session.id, elapsed)
        return elapsed

    async def stop(self, owner_id: str) -> SessionRecord | None:
        """
        Running -> Idle. Returns the new session record, None if idle.

        Record insert and session delete are two store calls; if the second
        one fails the session survives and recover() deals with it later.
        """
        async with self._locks.hold(owner_id):
            session = await asyncio.to_thread(self.store.get_active_session, owner_id)
            if session is None:
                return None
            return await self._finish(session)

    async def _finish(self, session: ActiveSession, *, keep_task_ref: bool = True) -> SessionRecord | None:
        stop_time = self._clock()
        duration = max(0, math.floor(stop_time - session.start_time))

        title = session.task_title
        task = await asyncio.to_thread(self.store.get_task, session.task_id)
        if task is not None:
            title = task.title

        record_id = await asyncio.to_thread(
            self.store.add_record,
            session.owner_id,
            duration,
            task_id=session.task_id if keep_task_ref and task is not None else None,
            task_title=title,
            created_at=stop_time,
        )
        await asyncio.to_thread(self.store.delete_active_session, session.id)

        logger.info(
            "Timer stopped owner=%s task=%s duration=%ss", session.owner_id, session.task_id, duration
        )
        return await asyncio.to_thread(self.store.get_record, record_id)

    async def reset_all(self, owner_id: str) -> int:
        """Drop the running session and every session record of the owner."""
        async with self._locks.hold(owner_id):
            n_active = await asyncio.to_thread(self.store.delete_active_sessions, owner_id)
            n_records = await asyncio.to_thread(self.store.delete_records, owner_id)
        logger.info("Timer reset owner=%s active=%s records=%s", owner_id, n_active, n_records)
        return n_records

    async def recover(self, owner_id: str) -> ActiveSession | None:
        """
        Startup reconciliation of a leftover in-progress session.

        A session whose task still exists keeps running (elapsed is derived
        from start_time, so nothing is lost while the app was closed). A
        session whose task is gone is stopped so its time survives as a
        record carrying only the title snapshot.
        """
        async with self._locks.hold(owner_id):
            session = await asyncio.to_thread(self.store.get_active_session, owner_id)
            if session is None:
                return None
            task = await asyncio.to_thread(self.store.get_task, session.task_id)
            if task is None:
                logger.warning(
                    "Leftover session owner=%s references missing task=%s; closing it",
                    owner_id,
                    session.task_id,
                )
                await self._finish(session, keep_task_ref=False)
                return None
        logger.info(
            "Resuming session owner=%s task=%s elapsed=%ss",
            owner_id,
            session.task_id,
            self._elapsed_since(session.start_time),
        )
        return session

    async def run_ticker(self, owner_id: str, *, interval_seconds: float = 1.0) -> None:
        """
        Display loop: tick once per interval until cancelled.

        Store failures are logged and the loop keeps going; ticks are
        idempotent, so the next one catches up.
        """
        sleep_s = max(0.05, float(interval_seconds))
        while True:
            try:
                await self.tick(owner_id)
            except StoreError:
                logger.exception("timer tick failed owner=%s", owner_id)
            await asyncio.sleep(sleep_s)
