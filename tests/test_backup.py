# tests/test_backup.py

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import FakeClock

from todo_timer.core.errors import BackupFormatError
from todo_timer.owner import OwnerIdentity
from todo_timer.services.backup import BACKUP_VERSION, BackupService, parse_backup
from todo_timer.services.task_service import TaskService
from todo_timer.services.timer_service import TimerCoordinator
from todo_timer.store.live_query import LiveQueryEngine
from todo_timer.store.models import Collection
from todo_timer.store.todo_store import TodoStore


async def _seed(tasks: TaskService, timer: TimerCoordinator, clock: FakeClock) -> None:
    await tasks.add("ann", "Buy milk", due_date="2024-05-02")
    walk = await tasks.add("ann", "Walk dog")
    await timer.start("ann", walk.id)
    clock.advance(65)
    await timer.stop("ann")


@pytest.mark.asyncio
async def test_export_shape(
    backup: BackupService, tasks: TaskService, timer: TimerCoordinator, clock: FakeClock
) -> None:
    await _seed(tasks, timer, clock)
    data = await backup.export("ann")

    assert data["version"] == BACKUP_VERSION
    assert data["userName"] == "ann"
    assert [t["title"] for t in data["todos"]] == ["Buy milk", "Walk dog"]
    assert data["todos"][0]["dueDate"] == "2024-05-02"
    (record,) = data["timerRecords"]
    assert record["duration"] == 65
    assert record["todoTitle"] == "Walk dog"
    assert record["todoId"] == data["todos"][1]["id"]


@pytest.mark.asyncio
async def test_export_import_round_trip_remaps_ids(
    tmp_path: Path,
    backup: BackupService,
    tasks: TaskService,
    timer: TimerCoordinator,
    store: TodoStore,
    identity: OwnerIdentity,
    clock: FakeClock,
) -> None:
    await _seed(tasks, timer, clock)
    path = await backup.export_to_file("ann", tmp_path / "out")
    assert path.name.startswith("todo-timer-backup-ann-")

    # replace with different data, then restore the file
    await backup.reset_owner("ann")
    await tasks.add("ann", "stale")

    owner = await backup.import_file(path)
    assert owner == "ann"
    assert identity.load() == "ann"

    restored = store.list_tasks("ann")
    assert [t.title for t in restored] == ["Buy milk", "Walk dog"]
    assert [t.order for t in restored] == [0, 1]
    (record,) = store.list_records("ann")
    assert record.duration == 65
    assert record.task_id == restored[1].id
    assert record.task_title == "Walk dog"


@pytest.mark.asyncio
async def test_invalid_backup_changes_nothing(
    backup: BackupService, tasks: TaskService, store: TodoStore
) -> None:
    await tasks.add("ann", "keep me")
    bad = {"version": BACKUP_VERSION, "userName": "ann", "todos": []}

    with pytest.raises(BackupFormatError, match="timerRecords"):
        await backup.import_backup(bad)
    with pytest.raises(BackupFormatError):
        await backup.import_backup("not json at all")
    with pytest.raises(BackupFormatError):
        await backup.import_backup(
            {"version": "1", "userName": "ann", "todos": [{"title": ""}], "timerRecords": []}
        )

    assert [t.title for t in store.list_tasks("ann")] == ["keep me"]


def test_parse_backup_accepts_timestamp_due_dates_and_unknown_task_refs() -> None:
    data = parse_backup(
        json.dumps(
            {
                "version": "2.0.0",
                "userName": " ann ",
                "exportDate": "2024-05-02T10:00:00Z",
                "todos": [
                    {
                        "id": "7",
                        "title": "Buy milk",
                        "completed": True,
                        "createdAt": "2024-05-01T08:00:00+00:00",
                        "dueDate": "2024-05-03T00:00:00.000Z",
                        "order": 2,
                    }
                ],
                "timerRecords": [
                    {"duration": 30, "createdAt": "2024-05-01T09:00:00Z", "todoId": None, "todoTitle": "x"}
                ],
            }
        )
    )
    assert data.user_name == "ann"
    (todo,) = data.todos
    assert todo["old_id"] == 7
    assert todo["due_date"] == "2024-05-03"
    assert todo["completed"] is True
    (record,) = data.timer_records
    assert record["old_task_id"] is None
    assert record["duration"] == 30


@pytest.mark.asyncio
async def test_import_refreshes_live_queries(
    backup: BackupService, engine: LiveQueryEngine, store: TodoStore
) -> None:
    seen: list[int] = []
    engine.subscribe(lambda: len(store.list_tasks("zoe")), [Collection.TASKS], seen.append)

    await backup.import_backup(
        {
            "version": BACKUP_VERSION,
            "userName": "zoe",
            "todos": [{"id": 1, "title": "a", "createdAt": 0}, {"id": 2, "title": "b", "createdAt": 0}],
            "timerRecords": [],
        }
    )
    assert seen[-1] == 2


@pytest.mark.asyncio
async def test_reset_owner_deletes_everything_and_forgets_name(
    backup: BackupService,
    tasks: TaskService,
    timer: TimerCoordinator,
    store: TodoStore,
    identity: OwnerIdentity,
    clock: FakeClock,
) -> None:
    identity.save("ann")
    await _seed(tasks, timer, clock)
    other = await tasks.add("ann", "running")
    await timer.start("ann", other.id)
    await tasks.add("bob", "untouched")

    await backup.reset_owner("ann")

    assert store.count(Collection.TASKS, "ann") == 0
    assert store.count(Collection.SESSION_RECORDS, "ann") == 0
    assert store.get_active_session("ann") is None
    assert store.count(Collection.TASKS, "bob") == 1
    assert identity.load() is None


@pytest.mark.asyncio
async def test_round_trip_keeps_sub_second_timestamps(
    backup: BackupService, tasks: TaskService, timer: TimerCoordinator, store: TodoStore, clock: FakeClock
) -> None:
    clock.now = 1_700_000_000.1234567
    await _seed(tasks, timer, clock)

    def snapshot():
        task_set = {(t.title, t.completed, t.created_at, t.due_date, t.order) for t in store.list_tasks("ann")}
        record_set = {(r.duration, r.created_at, r.task_title) for r in store.list_records("ann")}
        return task_set, record_set

    before = snapshot()
    data = await backup.export("ann")
    await backup.import_backup(json.dumps(data))

    assert snapshot() == before


@pytest.mark.parametrize("value", ["false", "yes", 2, None])
def test_parse_backup_rejects_non_boolean_completed(value) -> None:
    payload = {
        "version": BACKUP_VERSION,
        "userName": "ann",
        "todos": [{"id": 1, "title": "a", "completed": value, "createdAt": 0}],
        "timerRecords": [],
    }
    with pytest.raises(BackupFormatError, match="completed"):
        parse_backup(payload)


def test_parse_backup_accepts_zero_and_one_for_completed() -> None:
    payload = {
        "version": BACKUP_VERSION,
        "userName": "ann",
        "todos": [
            {"title": "a", "completed": 1, "createdAt": 0},
            {"title": "b", "completed": 0, "createdAt": 0},
        ],
        "timerRecords": [],
    }
    assert [t["completed"] for t in parse_backup(payload).todos] == [True, False]
