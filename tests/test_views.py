# tests/test_views.py

from __future__ import annotations

import datetime as dt
import itertools

import pytest

from todo_timer.core.errors import ValidationError
from todo_timer.services import views
from todo_timer.store.models import SessionRecord, Task

UTC = dt.UTC


def ts(y: int, m: int, d: int, hh: int = 12, mm: int = 0) -> float:
    return dt.datetime(y, m, d, hh, mm, tzinfo=UTC).timestamp()


def make_task(id_: int, title: str, *, completed=False, created=None, due=None, order=None) -> Task:
    return Task(
        id=id_,
        owner_id="ann",
        title=title,
        completed=completed,
        created_at=created if created is not None else ts(2024, 5, 1),
        due_date=due,
        order=id_ if order is None else order,
    )


def make_record(id_: int, duration: int, created: float, title: str | None = None) -> SessionRecord:
    return SessionRecord(id=id_, owner_id="ann", duration=duration, created_at=created, task_title=title)


TASKS = [
    make_task(1, "Buy milk"),
    make_task(2, "Walk dog", completed=True),
    make_task(3, "Buy bread", due="2024-05-02"),
    make_task(4, "Call mum", completed=True, created=ts(2024, 5, 2)),
]


def test_format_duration() -> None:
    assert views.format_duration(0) == "00:00:00"
    assert views.format_duration(65) == "00:01:05"
    assert views.format_duration(3600 * 27 + 59) == "27:00:59"
    assert views.format_duration(-5) == "00:00:00"


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(5, "Good morning"), (11, "Good morning"), (12, "Good afternoon"), (17, "Good evening"), (20, "Good night"), (2, "Good night")],
)
def test_greeting(hour: int, expected: str) -> None:
    assert views.greeting(hour) == expected


def test_task_day_prefers_due_date() -> None:
    assert views.task_day(TASKS[0], UTC) == dt.date(2024, 5, 1)
    assert views.task_day(TASKS[2], UTC) == dt.date(2024, 5, 2)


def test_partition_by_day_keeps_order() -> None:
    groups = views.partition_by_day(TASKS, lambda t: views.task_day(t, UTC))
    assert list(groups) == [dt.date(2024, 5, 1), dt.date(2024, 5, 2)]
    assert [t.id for t in groups[dt.date(2024, 5, 2)]] == [3, 4]


def test_filters_commute() -> None:
    day = dt.date(2024, 5, 1)
    filters = [
        lambda xs: views.filter_by_status(xs, "active"),
        lambda xs: views.filter_by_text(xs, "buy"),
        lambda xs: views.filter_by_day(xs, day, UTC),
    ]
    results = set()
    for perm in itertools.permutations(filters):
        out = TASKS
        for f in perm:
            out = f(out)
        results.add(tuple(t.id for t in out))
    assert results == {(1,)}
    assert views.filter_tasks(TASKS, status="active", query="BUY", day=day, tz=UTC) == [TASKS[0]]


def test_status_filter_values() -> None:
    assert [t.id for t in views.filter_by_status(TASKS, "completed")] == [2, 4]
    assert views.filter_by_status(TASKS, "all") == TASKS
    with pytest.raises(ValidationError):
        views.filter_by_status(TASKS, "someday")


def test_pagination() -> None:
    items = list(range(23))
    assert views.page_count(len(items)) == 3
    assert views.page_count(0) == 0
    assert views.paginate(items, 1) == list(range(10))
    assert views.paginate(items, 3) == [20, 21, 22]
    assert views.paginate(items, 4) == []
    assert views.paginate(items, 0) == []
    with pytest.raises(ValidationError):
        views.paginate(items, 1, page_size=0)


def test_history_today_and_yesterday() -> None:
    now = ts(2024, 5, 2, 18)
    records = [
        make_record(1, 30, ts(2024, 5, 1, 23, 59)),
        make_record(2, 65, ts(2024, 5, 2, 9)),
        make_record(3, 10, ts(2024, 5, 2, 17)),
    ]
    today = views.history(records, "today", now, UTC)
    assert [r.id for r in today] == [3, 2]
    assert views.total_duration(today) == 75
    assert [r.id for r in views.history(records, "yesterday", now, UTC)] == [1]
    with pytest.raises(ValidationError):
        views.history(records, "last week", now, UTC)


def test_day_summary_and_text() -> None:
    records = [make_record(1, 3725, ts(2024, 5, 2, 10), "Buy bread")]
    summary = views.day_summary("ann", TASKS, records, dt.date(2024, 5, 2), UTC)

    assert [t.id for t in summary.tasks] == [3, 4]
    assert summary.completed_count == 1
    assert summary.task_count == 2
    assert summary.total_seconds == 3725

    text = views.render_summary_text(summary)
    assert "Hi ann!" in text
    assert "May 02, 2024" in text
    assert "Completed tasks: 1/2" in text
    assert "Total time today: 01:02:05" in text
    assert "[x] Call mum" in text
