# services/backup.py

"""
Backup export/import and owner reset.

Backup file (JSON):
    {
      "version": "2.5.0",
      "userName": "...",
      "exportDate": "<ISO-8601>",
      "todos": [{id, title, completed, createdAt, dueDate, order, userId}, ...],
      "timerRecords": [{id, duration, createdAt, userId, todoId, todoTitle}, ...]
    }

Import is destructive-then-additive for the owner named in the file: the
owner's tasks, records and running session are deleted, the file's content
is inserted with fresh ids (record -> task references are remapped), the
owner becomes the persisted identity and every live query is re-run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..core.errors import BackupFormatError
from ..core.locks import OwnerLocks
from ..core.ports import Clock
from ..owner import OwnerIdentity
from ..store.live_query import LiveQueryEngine
from ..store.models import SessionRecord, Task
from ..store.todo_store import TodoStore

logger = logging.getLogger(__name__)

BACKUP_VERSION = "2.5.0"
REQUIRED_KEYS = ("version", "userName", "todos", "timerRecords")


def _ts_to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, UTC).isoformat(timespec="milliseconds")


def _iso_to_ts(raw: Any, what: str) -> float:
    if isinstance(raw, bool):
        raise BackupFormatError(f"Invalid {what}: {raw!r}")
    if isinstance(raw, (int, float)):
        return round(float(raw), 3)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = datetime.fromisoformat(raw.strip())
        except ValueError:
            raise BackupFormatError(f"Invalid {what}: {raw!r}") from None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return round(parsed.timestamp(), 3)
    raise BackupFormatError(f"Invalid {what}: {raw!r}")


def _due_date(raw: Any) -> str | None:
    """Accept yyyy-mm-dd or a full ISO timestamp (older exports stored a Date)."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise BackupFormatError(f"Invalid dueDate: {raw!r}")
    try:
        return datetime.fromisoformat(raw.strip()[:10]).date().isoformat()
    except ValueError:
        raise BackupFormatError(f"Invalid dueDate: {raw!r}") from None


def _flag(raw: Any, what: str) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    raise BackupFormatError(f"Invalid {what}: {raw!r}")


def _opt_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class BackupData:
    version: str
    user_name: str
    export_date: str | None
    todos: list[dict[str, Any]] = field(default_factory=list)
    timer_records: list[dict[str, Any]] = field(default_factory=list)


def task_to_json(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "completed": task.completed,
        "createdAt": _ts_to_iso(task.created_at),
        "dueDate": task.due_date,
        "order": task.order,
        "userId": task.owner_id,
    }


def record_to_json(record: SessionRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "duration": record.duration,
        "createdAt": _ts_to_iso(record.created_at),
        "userId": record.owner_id,
        "todoId": record.task_id,
        "todoTitle": record.task_title,
    }


def parse_backup(payload: str | bytes | dict[str, Any]) -> BackupData:
    """
    Validate a backup payload and convert it to store-ready items.

    Raises BackupFormatError before anything is written.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise BackupFormatError(f"Backup is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise BackupFormatError("Backup must be a JSON object.")

    missing = [k for k in REQUIRED_KEYS if payload.get(k) in (None, "")]
    if missing:
        raise BackupFormatError(f"Invalid backup file format (missing: {', '.join(missing)})")

    user_name = payload["userName"]
    if not isinstance(user_name, str) or not user_name.strip():
        raise BackupFormatError("userName must be a non-empty string.")
    if not isinstance(payload["todos"], list) or not isinstance(payload["timerRecords"], list):
        raise BackupFormatError("todos and timerRecords must be lists.")

    todos: list[dict[str, Any]] = []
    for raw in payload["todos"]:
        if not isinstance(raw, dict):
            raise BackupFormatError("Each todo must be an object.")
        title = str(raw.get("title") or "").strip()
        if not title:
            raise BackupFormatError("Todo without a title.")
        todos.append(
            {
                "old_id": _opt_int(raw.get("id")),
                "title": title,
                "completed": _flag(raw.get("completed", False), "todo completed"),
                "created_at": _iso_to_ts(raw.get("createdAt"), "todo createdAt"),
                "due_date": _due_date(raw.get("dueDate")),
                "order": _opt_int(raw.get("order")),
            }
        )

    records: list[dict[str, Any]] = []
    for raw in payload["timerRecords"]:
        if not isinstance(raw, dict):
            raise BackupFormatError("Each timer record must be an object.")
        duration = _opt_int(raw.get("duration"))
        if duration is None or duration < 0:
            raise BackupFormatError(f"Invalid record duration: {raw.get('duration')!r}")
        title = raw.get("todoTitle")
        records.append(
            {
                "duration": duration,
                "created_at": _iso_to_ts(raw.get("createdAt"), "record createdAt"),
                "old_task_id": _opt_int(raw.get("todoId")),
                "task_title": str(title) if title is not None else None,
            }
        )

    export_date = payload.get("exportDate")
    return BackupData(
        version=str(payload["version"]),
        user_name=user_name.strip(),
        export_date=str(export_date) if export_date else None,
        todos=todos,
        timer_records=records,
    )


class BackupService:
    def __init__(
        self,
        store: TodoStore,
        identity: OwnerIdentity,
        *,
        engine: LiveQueryEngine | None = None,
        clock: Clock | None = None,
        locks: OwnerLocks | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.engine = engine
        self._clock = clock
        self._locks = locks if locks is not None else OwnerLocks()

    def _now(self) -> datetime:
        if self._clock is None:
            return datetime.now(UTC)
        return datetime.fromtimestamp(self._clock(), UTC)

    # ---- export ----

    async def export(self, owner_id: str) -> dict[str, Any]:
        tasks = await asyncio.to_thread(self.store.list_tasks, owner_id)
        records = await asyncio.to_thread(self.store.list_records, owner_id)
        return {
            "todos": [task_to_json(t) for t in tasks],
            "timerRecords": [record_to_json(r) for r in records],
            "userName": owner_id,
            "exportDate": self._now().isoformat(),
            "version": BACKUP_VERSION,
        }

    def backup_filename(self, owner_id: str) -> str:
        return f"todo-timer-backup-{owner_id}-{self._now().date().isoformat()}.json"

    async def export_to_file(self, owner_id: str, directory: str | Path) -> Path:
        data = await self.export(owner_id)
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.backup_filename(owner_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, path)
        logger.info(
            "Exported owner=%s tasks=%d records=%d to %s",
            owner_id,
            len(data["todos"]),
            len(data["timerRecords"]),
            path,
        )
        return path

    # ---- import ----

    async def _delete_owner_data(self, owner_id: str) -> None:
        await asyncio.to_thread(self.store.delete_active_sessions, owner_id)
        await asyncio.to_thread(self.store.delete_records, owner_id)
        await asyncio.to_thread(self.store.delete_tasks, owner_id)

    async def import_backup(self, payload: str | bytes | dict[str, Any]) -> str:
        """Replace the owner's data with the backup. Returns the owner name."""
        data = parse_backup(payload)
        owner = data.user_name

        async with self._locks.hold(owner):
            await self._delete_owner_data(owner)

            new_ids = await asyncio.to_thread(self.store.bulk_add_tasks, owner, data.todos)
            id_map = {
                item["old_id"]: new_id
                for item, new_id in zip(data.todos, new_ids)
                if item["old_id"] is not None
            }
            await asyncio.to_thread(self.store.normalize_task_order, owner)

            records = [
                {
                    "duration": r["duration"],
                    "created_at": r["created_at"],
                    "task_id": id_map.get(r["old_task_id"]),
                    "task_title": r["task_title"],
                }
                for r in data.timer_records
            ]
            await asyncio.to_thread(self.store.bulk_add_records, owner, records)

        self.identity.save(owner)
        if self.engine is not None:
            self.engine.refresh_all()

        logger.info(
            "Imported backup version=%s owner=%s tasks=%d records=%d",
            data.version,
            owner,
            len(data.todos),
            len(records),
        )
        return owner

    async def import_file(self, path: str | Path) -> str:
        path = Path(path)
        try:
            text = path.read_text("utf-8")
        except OSError as exc:
            raise BackupFormatError(f"Cannot read backup {path}: {exc}") from exc
        return await self.import_backup(text)

    # ---- reset ----

    async def reset_owner(self, owner_id: str) -> None:
        """Delete everything the owner has and forget the persisted identity."""
        async with self._locks.hold(owner_id):
            await self._delete_owner_data(owner_id)
        self.identity.clear()
        if self.engine is not None:
            self.engine.refresh_all()
        logger.info("Owner data reset owner=%s", owner_id)
