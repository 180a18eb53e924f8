# store/todo_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from ..core.errors import StoreError, ValidationError
from ..core.ports import ChangeListener
from .models import ActiveSession, Collection, SessionRecord, Task

logger = logging.getLogger(__name__)

# Task fields that may be changed in place; "order" maps to the order_index column.
_TASK_UPDATABLE = {
    "title": "title",
    "completed": "completed",
    "due_date": "due_date",
    "order": "order_index",
}


class TodoStore:
    """
    SQLite store for tasks, session records and in-progress sessions.

    The schema is migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection, so calls can be pushed to
      worker threads with asyncio.to_thread

    Every committed mutation is published to the attached ChangeListener
    (normally the LiveQueryEngine) with the collections it touched.
    """

    def __init__(
        self,
        db_path: str | Path = "todo_timer.sqlite3",
        *,
        listener: ChangeListener | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listener = listener
        self._clock = clock
        self._ensure_schema()
        logger.info("TodoStore ready db=%s tasks=%s", self._db_path, self.count(Collection.TASKS))

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _stamp(self, ts: float | None) -> float:
        # Millisecond precision, so a timestamp survives the ISO-8601 backup format.
        return round(self._clock() if ts is None else float(ts), 3)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One connection, one transaction.

        Commits on success, rolls back on any error. sqlite3 errors are
        re-raised as StoreError.
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open store {self._db_path}: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            logger.error("Store operation failed db=%s: %s", self._db_path, exc)
            raise StoreError(str(exc)) from exc
        except Exception:
            with contextlib.suppress(sqlite3.Error):
                conn.rollback()
            raise
        finally:
            conn.close()

    def _notify(self, *collections: Collection) -> None:
        if self._listener is None or not collections:
            return
        try:
            self._listener.publish(*collections)
        except Exception:
            logger.exception("Change listener failed for %s", [c.value for c in collections])

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    due_date TEXT,
                    order_index INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS session_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    duration INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    task_id INTEGER,
                    task_title TEXT
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS active_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL UNIQUE,
                    task_id INTEGER NOT NULL,
                    task_title TEXT NOT NULL DEFAULT '',
                    start_time REAL NOT NULL,
                    elapsed INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            def add_col(table: str, name: str, decl: str) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                logger.info("TodoStore migration: added column %s.%s", table, name)

            # Older files were created before due dates and manual ordering existed.
            add_col("tasks", "due_date", "TEXT")
            add_col("tasks", "order_index", "INTEGER NOT NULL DEFAULT 0")
            add_col("session_records", "task_id", "INTEGER")
            add_col("session_records", "task_title", "TEXT")
            add_col("active_sessions", "elapsed", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_order ON tasks(owner_id, order_index)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_owner_created "
                "ON session_records(owner_id, created_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_records_task ON session_records(task_id)")

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            title=str(row["title"] or ""),
            completed=bool(row["completed"]),
            created_at=float(row["created_at"] or 0.0),
            due_date=row["due_date"],
            order=int(row["order_index"] or 0),
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            duration=int(row["duration"] or 0),
            created_at=float(row["created_at"] or 0.0),
            task_id=int(row["task_id"]) if row["task_id"] is not None else None,
            task_title=row["task_title"],
        )

    @staticmethod
    def _row_to_active(row: sqlite3.Row) -> ActiveSession:
        return ActiveSession(
            id=int(row["id"]),
            owner_id=str(row["owner_id"]),
            task_id=int(row["task_id"]),
            task_title=str(row["task_title"] or ""),
            start_time=float(row["start_time"]),
            elapsed=int(row["elapsed"] or 0),
        )

    @staticmethod
    def _next_order(conn: sqlite3.Connection, owner_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(order_index) AS max_order FROM tasks WHERE owner_id = ?",
            (owner_id,),
        ).fetchone()
        max_order = row["max_order"] if row is not None else None
        return 0 if max_order is None else int(max_order) + 1

    @staticmethod
    def _resequence(conn: sqlite3.Connection, owner_id: str) -> None:
        rows = conn.execute(
            "SELECT id FROM tasks WHERE owner_id = ? ORDER BY order_index ASC, id ASC",
            (owner_id,),
        ).fetchall()
        for idx, row in enumerate(rows):
            conn.execute("UPDATE tasks SET order_index = ? WHERE id = ?", (idx, row["id"]))

    # ---- generic ----

    def count(self, collection: Collection, owner_id: str | None = None) -> int:
        table = Collection(collection).value
        with self._transaction() as conn:
            if owner_id is None:
                (n,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            else:
                (n,) = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE owner_id = ?", (owner_id,)
                ).fetchone()
        return int(n)

    # ---- tasks ----

    def add_task(
        self,
        owner_id: str,
        title: str,
        *,
        completed: bool = False,
        due_date: str | None = None,
        created_at: float | None = None,
    ) -> int:
        if not owner_id:
            raise ValidationError("owner_id is required")
        if not title or not title.strip():
            raise ValidationError("title is required")

        ts = self._stamp(created_at)
        with self._transaction() as conn:
            order = self._next_order(conn, owner_id)
            cur = conn.execute(
                """
                INSERT INTO tasks(owner_id, title, completed, created_at, due_date, order_index)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (owner_id, title.strip(), int(bool(completed)), ts, due_date, order),
            )
            rowid = cur.lastrowid
        if rowid is None:
            raise StoreError("SQLite did not return lastrowid for tasks insert")
        task_id = int(rowid)
        logger.debug("Task added id=%s owner=%s order=%s", task_id, owner_id, order)
        self._notify(Collection.TASKS)
        return task_id

    def bulk_add_tasks(self, owner_id: str, items: Iterable[Mapping[str, Any]]) -> list[int]:
        """
        Insert many tasks in one transaction.

        Each item carries title and optionally completed, created_at, due_date
        and order. Items without an order are appended after the current max.
        """
        ids: list[int] = []
        with self._transaction() as conn:
            for item in items:
                title = str(item.get("title") or "").strip()
                if not title:
                    raise ValidationError("title is required")
                order = item.get("order")
                if order is None:
                    order = self._next_order(conn, owner_id)
                created_at = item.get("created_at")
                cur = conn.execute(
                    """
                    INSERT INTO tasks(owner_id, title, completed, created_at, due_date, order_index)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        owner_id,
                        title,
                        int(bool(item.get("completed", False))),
                        self._stamp(created_at),
                        item.get("due_date"),
                        int(order),
                    ),
                )
                ids.append(int(cur.lastrowid or 0))
        if ids:
            self._notify(Collection.TASKS)
        return ids

    def get_task(self, task_id: int) -> Task | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self, owner_id: str, predicate: Callable[[Task], bool] | None = None) -> list[Task]:
        """Owner's tasks by manual order (ascending)."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE owner_id = ? ORDER BY order_index ASC, id ASC",
                (owner_id,),
            ).fetchall()
        tasks = [self._row_to_task(r) for r in rows]
        if predicate is None:
            return tasks
        return [t for t in tasks if predicate(t)]

    def update_task(self, task_id: int, **fields: Any) -> bool:
        """
        Partial in-place update. Returns False if the task does not exist.

        Allowed fields: title, completed, due_date, order.
        """
        unknown = set(fields) - set(_TASK_UPDATABLE)
        if unknown:
            raise ValidationError(f"cannot update task fields: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_task(task_id) is not None

        sets: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            if name == "title":
                if not value or not str(value).strip():
                    raise ValidationError("title is required")
                value = str(value).strip()
            elif name == "completed":
                value = int(bool(value))
            elif name == "order":
                value = int(value)
            sets.append(f"{_TASK_UPDATABLE[name]} = ?")
            params.append(value)
        params.append(int(task_id))

        with self._transaction() as conn:
            cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            changed = cur.rowcount == 1
        if changed:
            self._notify(Collection.TASKS)
        else:
            logger.debug("update_task: id=%s not found", task_id)
        return changed

    def delete_task(self, task_id: int) -> bool:
        """
        Delete a task and everything that references it.

        Session records of the task and an in-progress session timing it are
        deleted too; the owner's remaining tasks are resequenced to 0..n-1.
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT owner_id FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
            if row is None:
                return False
            owner_id = str(row["owner_id"])
            n_records = conn.execute(
                "DELETE FROM session_records WHERE task_id = ?", (int(task_id),)
            ).rowcount
            n_active = conn.execute(
                "DELETE FROM active_sessions WHERE task_id = ?", (int(task_id),)
            ).rowcount
            conn.execute("DELETE FROM tasks WHERE id = ?", (int(task_id),))
            self._resequence(conn, owner_id)

        logger.debug(
            "Task deleted id=%s owner=%s records=%s active=%s", task_id, owner_id, n_records, n_active
        )
        touched = [Collection.TASKS]
        if n_records:
            touched.append(Collection.SESSION_RECORDS)
        if n_active:
            touched.append(Collection.ACTIVE_SESSIONS)
        self._notify(*touched)
        return True

    def delete_tasks(self, owner_id: str, predicate: Callable[[Task], bool] | None = None) -> int:
        """
        Bulk delete of an owner's tasks (all of them when predicate is None).

        Unlike delete_task this does not cascade; callers resetting an owner
        clear the other collections themselves.
        """
        if predicate is None:
            with self._transaction() as conn:
                n = conn.execute("DELETE FROM tasks WHERE owner_id = ?", (owner_id,)).rowcount
        else:
            ids = [t.id for t in self.list_tasks(owner_id, predicate)]
            if not ids:
                return 0
            with self._transaction() as conn:
                placeholders = ",".join("?" for _ in ids)
                n = conn.execute(
                    f"DELETE FROM tasks WHERE owner_id = ? AND id IN ({placeholders})",
                    (owner_id, *ids),
                ).rowcount
        if n:
            self._notify(Collection.TASKS)
        return int(n)

    def reorder_tasks(self, owner_id: str, ordered_ids: Iterable[int]) -> int:
        """
        Give each listed task its zero-based position in ordered_ids.

        Runs in a single transaction. Ids that do not belong to owner_id are
        skipped; tasks missing from the list keep their order, so callers must
        pass the owner's complete task list to keep the order dense.
        Returns the number of tasks updated.
        """
        updated = 0
        with self._transaction() as conn:
            for position, task_id in enumerate(ordered_ids):
                cur = conn.execute(
                    "UPDATE tasks SET order_index = ? WHERE id = ? AND owner_id = ?",
                    (position, int(task_id), owner_id),
                )
                updated += cur.rowcount
        if updated:
            self._notify(Collection.TASKS)
        logger.debug("Reordered owner=%s updated=%s", owner_id, updated)
        return updated

    def normalize_task_order(self, owner_id: str) -> None:
        with self._transaction() as conn:
            self._resequence(conn, owner_id)
        self._notify(Collection.TASKS)

    # ---- session records ----

    def add_record(
        self,
        owner_id: str,
        duration: int,
        *,
        task_id: int | None = None,
        task_title: str | None = None,
        created_at: float | None = None,
    ) -> int:
        """Insert a finished session. A task_id whose task is gone is stored as NULL."""
        if not owner_id:
            raise ValidationError("owner_id is required")
        ts = self._stamp(created_at)
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO session_records(owner_id, duration, created_at, task_id, task_title)
                VALUES (?, ?, ?, (SELECT id FROM tasks WHERE id = ?), ?)
                """,
                (owner_id, max(0, int(duration)), ts, task_id, task_title),
            )
            rowid = cur.lastrowid
        if rowid is None:
            raise StoreError("SQLite did not return lastrowid for session_records insert")
        self._notify(Collection.SESSION_RECORDS)
        return int(rowid)

    def bulk_add_records(self, owner_id: str, items: Iterable[Mapping[str, Any]]) -> list[int]:
        ids: list[int] = []
        with self._transaction() as conn:
            for item in items:
                created_at = item.get("created_at")
                cur = conn.execute(
                    """
                    INSERT INTO session_records(owner_id, duration, created_at, task_id, task_title)
                    VALUES (?, ?, ?, (SELECT id FROM tasks WHERE id = ?), ?)
                    """,
                    (
                        owner_id,
                        max(0, int(item.get("duration") or 0)),
                        self._stamp(created_at),
                        item.get("task_id"),
                        item.get("task_title"),
                    ),
                )
                ids.append(int(cur.lastrowid or 0))
        if ids:
            self._notify(Collection.SESSION_RECORDS)
        return ids

    def get_record(self, record_id: int) -> SessionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM session_records WHERE id = ?", (int(record_id),)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_records(
        self, owner_id: str, predicate: Callable[[SessionRecord], bool] | None = None
    ) -> list[SessionRecord]:
        """Owner's session records, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM session_records WHERE owner_id = ? ORDER BY created_at DESC, id DESC",
                (owner_id,),
            ).fetchall()
        records = [self._row_to_record(r) for r in rows]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def delete_record(self, record_id: int) -> bool:
        with self._transaction() as conn:
            n = conn.execute("DELETE FROM session_records WHERE id = ?", (int(record_id),)).rowcount
        if n:
            self._notify(Collection.SESSION_RECORDS)
        return n == 1

    def delete_records(
        self, owner_id: str, predicate: Callable[[SessionRecord], bool] | None = None
    ) -> int:
        if predicate is None:
            with self._transaction() as conn:
                n = conn.execute(
                    "DELETE FROM session_records WHERE owner_id = ?", (owner_id,)
                ).rowcount
        else:
            ids = [r.id for r in self.list_records(owner_id, predicate)]
            if not ids:
                return 0
            with self._transaction() as conn:
                placeholders = ",".join("?" for _ in ids)
                n = conn.execute(
                    f"DELETE FROM session_records WHERE owner_id = ? AND id IN ({placeholders})",
                    (owner_id, *ids),
                ).rowcount
        if n:
            self._notify(Collection.SESSION_RECORDS)
        return int(n)

    # ---- in-progress sessions ----

    def add_active_session(
        self, owner_id: str, task_id: int, task_title: str, start_time: float
    ) -> int | None:
        """
        Insert the owner's in-progress session.

        Returns None without writing if the owner already has one (the
        owner_id column is UNIQUE) or the task no longer exists.
        """
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO active_sessions(owner_id, task_id, task_title, start_time, elapsed)
                SELECT ?, id, ?, ?, 0 FROM tasks WHERE id = ?
                """,
                (owner_id, task_title or "", round(float(start_time), 3), int(task_id)),
            )
            inserted = cur.rowcount == 1
            rowid = cur.lastrowid
        if not inserted or rowid is None:
            logger.debug("add_active_session ignored: owner=%s already running", owner_id)
            return None
        self._notify(Collection.ACTIVE_SESSIONS)
        return int(rowid)

    def get_active_session(self, owner_id: str) -> ActiveSession | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM active_sessions WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        return self._row_to_active(row) if row else None

    def list_active_sessions(self) -> list[ActiveSession]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM active_sessions ORDER BY id ASC").fetchall()
        return [self._row_to_active(r) for r in rows]

    def update_active_elapsed(self, session_id: int, elapsed: int) -> bool:
        with self._transaction() as conn:
            n = conn.execute(
                "UPDATE active_sessions SET elapsed = ? WHERE id = ? AND elapsed != ?",
                (max(0, int(elapsed)), int(session_id), max(0, int(elapsed))),
            ).rowcount
        if n:
            self._notify(Collection.ACTIVE_SESSIONS)
        return n == 1

    def delete_active_session(self, session_id: int) -> bool:
        with self._transaction() as conn:
            n = conn.execute("DELETE FROM active_sessions WHERE id = ?", (int(session_id),)).rowcount
        if n:
            self._notify(Collection.ACTIVE_SESSIONS)
        return n == 1

    def delete_active_sessions(self, owner_id: str) -> int:
        with self._transaction() as conn:
            n = conn.execute("DELETE FROM active_sessions WHERE owner_id = ?", (owner_id,)).rowcount
        if n:
            self._notify(Collection.ACTIVE_SESSIONS)
        return int(n)
