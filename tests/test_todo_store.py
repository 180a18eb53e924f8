# tests/test_todo_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from fakes import FakeClock, RecordingListener

from todo_timer.core.errors import StoreError, ValidationError
from todo_timer.store.models import Collection
from todo_timer.store.todo_store import TodoStore


@pytest.fixture()
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture()
def db(tmp_path: Path, listener: RecordingListener, clock: FakeClock) -> TodoStore:
    return TodoStore(tmp_path / "todo.sqlite3", listener=listener, clock=clock)


def test_task_crud_and_order(db: TodoStore, listener: RecordingListener, clock: FakeClock) -> None:
    a = db.add_task("ann", "Buy milk")
    b = db.add_task("ann", "Walk dog", due_date="2024-05-02")
    other = db.add_task("bob", "Not Ann's")

    tasks = db.list_tasks("ann")
    assert [t.id for t in tasks] == [a, b]
    assert [t.order for t in tasks] == [0, 1]
    assert tasks[0].created_at == clock.now
    assert tasks[1].due_date == "2024-05-02"
    assert db.get_task(other).order == 0  # orders are per owner

    assert db.update_task(a, completed=True, title="  Buy oat milk ")
    t = db.get_task(a)
    assert t.completed is True
    assert t.title == "Buy oat milk"

    assert db.update_task(9999, completed=True) is False
    with pytest.raises(ValidationError):
        db.update_task(a, colour="red")
    with pytest.raises(ValidationError):
        db.add_task("ann", "   ")

    assert db.list_tasks("ann", lambda t: t.completed) == [db.get_task(a)]
    assert db.count(Collection.TASKS) == 3
    assert db.count(Collection.TASKS, "ann") == 2
    assert Collection.TASKS in listener.flat()


def test_delete_task_cascades_and_keeps_order_dense(db: TodoStore, listener: RecordingListener) -> None:
    ids = [db.add_task("ann", f"t{i}") for i in range(4)]
    doomed = ids[1]
    db.add_record("ann", 30, task_id=doomed, task_title="t1")
    keep = db.add_record("ann", 40, task_id=ids[2], task_title="t2")
    db.add_active_session("ann", doomed, "t1", 100.0)
    listener.published.clear()

    assert db.delete_task(doomed) is True
    assert db.delete_task(doomed) is False

    remaining = db.list_tasks("ann")
    assert [t.id for t in remaining] == [ids[0], ids[2], ids[3]]
    assert [t.order for t in remaining] == [0, 1, 2]
    assert [r.id for r in db.list_records("ann")] == [keep]
    assert db.get_active_session("ann") is None
    assert listener.published == [
        (Collection.TASKS, Collection.SESSION_RECORDS, Collection.ACTIVE_SESSIONS)
    ]


def test_reorder_is_one_batch_and_skips_foreign_ids(db: TodoStore, listener: RecordingListener) -> None:
    a, b, c = (db.add_task("ann", n) for n in ("a", "b", "c"))
    foreign = db.add_task("bob", "x")
    listener.published.clear()

    assert db.reorder_tasks("ann", [c, foreign, a, b]) == 3
    assert [t.title for t in db.list_tasks("ann")] == ["c", "a", "b"]
    assert listener.published == [(Collection.TASKS,)]
    assert db.get_task(foreign).order == 0

    # the foreign id still took up position 1
    assert [t.order for t in db.list_tasks("ann")] == [0, 2, 3]

    db.normalize_task_order("ann")
    assert [t.order for t in db.list_tasks("ann")] == [0, 1, 2]


def test_records_newest_first_and_bulk_delete(db: TodoStore, clock: FakeClock) -> None:
    first = db.add_record("ann", 10, task_title="a")
    clock.advance(60)
    second = db.add_record("ann", 20, task_title="b")
    db.add_record("bob", 5)

    assert [r.id for r in db.list_records("ann")] == [second, first]
    assert db.get_record(first).created_at == clock.now - 60
    negative = db.add_record("ann", -3)
    assert db.get_record(negative).duration == 0

    assert db.delete_records("ann", lambda r: r.duration >= 20) == 1
    assert db.delete_record(first) is True
    assert db.delete_records("ann") == 1
    assert db.list_records("ann") == []
    assert db.count(Collection.SESSION_RECORDS, "bob") == 1


def test_active_session_is_unique_per_owner(db: TodoStore, listener: RecordingListener) -> None:
    task = db.add_task("ann", "Walk dog")
    sid = db.add_active_session("ann", task, "Walk dog", 100.0)
    assert sid is not None
    assert db.add_active_session("ann", task, "Walk dog", 200.0) is None

    session = db.get_active_session("ann")
    assert session.start_time == 100.0
    assert session.elapsed == 0

    listener.published.clear()
    assert db.update_active_elapsed(sid, 5) is True
    assert db.update_active_elapsed(sid, 5) is False  # unchanged value: no write
    assert listener.published == [(Collection.ACTIVE_SESSIONS,)]
    assert db.get_active_session("ann").elapsed == 5

    assert len(db.list_active_sessions()) == 1
    assert db.delete_active_sessions("ann") == 1
    assert db.get_active_session("ann") is None


def test_bulk_add_tasks_keeps_given_order(db: TodoStore) -> None:
    ids = db.bulk_add_tasks(
        "ann",
        [
            {"title": "late", "order": 5, "created_at": 10.0},
            {"title": "early", "order": 1, "completed": True, "due_date": "2024-01-01"},
            {"title": "appended"},
        ],
    )
    assert len(ids) == 3
    assert [t.title for t in db.list_tasks("ann")] == ["early", "late", "appended"]
    assert db.get_task(ids[0]).created_at == 10.0
    assert db.get_task(ids[2]).order == 6


def test_schema_migration_adds_missing_column(tmp_path: Path) -> None:
    path = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE tasks (id INTEGER PRIMARY KEY AUTOINCREMENT, owner_id TEXT NOT NULL, "
        "title TEXT NOT NULL, completed INTEGER NOT NULL DEFAULT 0, created_at REAL NOT NULL)"
    )
    conn.execute("INSERT INTO tasks(owner_id, title, created_at) VALUES ('ann', 'legacy', 1.0)")
    conn.commit()
    conn.close()

    db = TodoStore(path)
    (task,) = db.list_tasks("ann")
    assert task.title == "legacy"
    assert task.due_date is None
    assert db.add_task("ann", "new") > task.id


def test_sqlite_errors_surface_as_store_error(tmp_path: Path) -> None:
    db = TodoStore(tmp_path / "todo.sqlite3")
    conn = sqlite3.connect(db.db_path)
    conn.execute("DROP TABLE session_records")
    conn.commit()
    conn.close()

    with pytest.raises(StoreError):
        db.add_record("ann", 10)


def test_inserts_do_not_reference_missing_tasks(db: TodoStore) -> None:
    task = db.add_task("ann", "Walk dog")
    db.delete_task(task)

    record_id = db.add_record("ann", 65, task_id=task, task_title="Walk dog")
    record = db.get_record(record_id)
    assert record.task_id is None
    assert record.task_title == "Walk dog"

    (bulk_id,) = db.bulk_add_records("ann", [{"duration": 5, "task_id": task}])
    assert db.get_record(bulk_id).task_id is None

    assert db.add_active_session("ann", task, "Walk dog", 100.0) is None
    assert db.get_active_session("ann") is None


def test_timestamps_are_stored_to_the_millisecond(db: TodoStore, clock: FakeClock) -> None:
    clock.now = 1_700_000_000.1234567
    task = db.get_task(db.add_task("ann", "Walk dog"))
    record = db.get_record(db.add_record("ann", 1, task_id=task.id))
    db.add_active_session("ann", task.id, task.title, clock.now)

    assert task.created_at == 1_700_000_000.123
    assert record.created_at == 1_700_000_000.123
    assert db.get_active_session("ann").start_time == 1_700_000_000.123
