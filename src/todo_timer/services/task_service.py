# services/task_service.py

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Iterable

from ..core.errors import ValidationError
from ..core.locks import OwnerLocks
from ..store.models import Task
from ..store.todo_store import TodoStore

logger = logging.getLogger(__name__)


def normalize_due_date(due: str | dt.date | None) -> str | None:
    """Accept a date, an ISO string or blank; return yyyy-mm-dd or None."""
    if due is None:
        return None
    if isinstance(due, dt.date):
        return due.isoformat()
    due = due.strip()
    if due == "":
        return None
    try:
        return dt.date.fromisoformat(due).isoformat()
    except ValueError:
        raise ValidationError("Invalid date. Use YYYY-MM-DD.") from None


class TaskService:
    """
    Task list operations for one store.

    Each call awaits the store in a worker thread. Operations addressing a
    task by id also take the owner id; a task owned by someone else is
    treated like a missing one (benign no-op).
    """

    def __init__(self, store: TodoStore, *, locks: OwnerLocks | None = None) -> None:
        self.store = store
        # Shared with TimerCoordinator and BackupService (see create_initial_state).
        self._locks = locks if locks is not None else OwnerLocks()

    async def _owned(self, owner_id: str, task_id: int) -> Task | None:
        task = await asyncio.to_thread(self.store.get_task, task_id)
        if task is None or task.owner_id != owner_id:
            return None
        return task

    # ---- tasks ----

    async def add(self, owner_id: str, title: str, *, due_date: str | dt.date | None = None) -> Task:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Task title cannot be empty.")
        due = normalize_due_date(due_date)
        task_id = await asyncio.to_thread(self.store.add_task, owner_id, title, due_date=due)
        task = await asyncio.to_thread(self.store.get_task, task_id)
        if task is None:
            raise RuntimeError(f"task {task_id} vanished right after insert")
        logger.info("Task added id=%s owner=%s order=%s", task.id, owner_id, task.order)
        return task

    async def get(self, owner_id: str, task_id: int) -> Task | None:
        return await self._owned(owner_id, task_id)

    async def list_tasks(self, owner_id: str) -> list[Task]:
        return await asyncio.to_thread(self.store.list_tasks, owner_id)

    async def set_completed(self, owner_id: str, task_id: int, completed: bool) -> bool:
        async with self._locks.hold(owner_id):
            if await self._owned(owner_id, task_id) is None:
                return False
            return await asyncio.to_thread(self.store.update_task, task_id, completed=completed)

    async def toggle(self, owner_id: str, task_id: int) -> Task | None:
        """Flip completion. Returns the updated task, None if not found."""
        async with self._locks.hold(owner_id):
            task = await self._owned(owner_id, task_id)
            if task is None:
                return None
            await asyncio.to_thread(self.store.update_task, task_id, completed=not task.completed)
            return await asyncio.to_thread(self.store.get_task, task_id)

    async def rename(self, owner_id: str, task_id: int, title: str) -> bool:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Name cannot be empty.")
        if await self._owned(owner_id, task_id) is None:
            return False
        return await asyncio.to_thread(self.store.update_task, task_id, title=title)

    async def set_due_date(self, owner_id: str, task_id: int, due: str | dt.date | None) -> bool:
        value = normalize_due_date(due)
        if await self._owned(owner_id, task_id) is None:
            return False
        return await asyncio.to_thread(self.store.update_task, task_id, due_date=value)

    async def delete(self, owner_id: str, task_id: int) -> bool:
        """Delete with cascade (records, running session) and keep order dense."""
        async with self._locks.hold(owner_id):
            if await self._owned(owner_id, task_id) is None:
                return False
            deleted = await asyncio.to_thread(self.store.delete_task, task_id)
        if deleted:
            logger.info("Task deleted id=%s owner=%s", task_id, owner_id)
        return deleted

    # ---- ordering ----

    async def reorder(self, owner_id: str, ordered_ids: Iterable[int]) -> int:
        """
        Resequence tasks to the positions given by ordered_ids.

        Pass the owner's complete task list; tasks left out keep their old
        order value and may then collide with the new ones.
        """
        ids = [int(i) for i in ordered_ids]
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate task id in reorder list.")
        async with self._locks.hold(owner_id):
            return await asyncio.to_thread(self.store.reorder_tasks, owner_id, ids)

    async def move(self, owner_id: str, task_id: int, to_index: int) -> bool:
        """Move one task to a position of the full list, shifting the others."""
        async with self._locks.hold(owner_id):
            tasks = await asyncio.to_thread(self.store.list_tasks, owner_id)
            ids = [t.id for t in tasks]
            if task_id not in ids:
                return False
            to_index = max(0, min(int(to_index), len(ids) - 1))
            from_index = ids.index(task_id)
            if from_index == to_index and [t.order for t in tasks] == list(range(len(tasks))):
                return True
            ids.insert(to_index, ids.pop(from_index))
            await asyncio.to_thread(self.store.reorder_tasks, owner_id, ids)
        return True

    async def normalize(self, owner_id: str) -> None:
        async with self._locks.hold(owner_id):
            await asyncio.to_thread(self.store.normalize_task_order, owner_id)
