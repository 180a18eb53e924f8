# services/views.py

"""
Derived views over store contents.

Everything here is a pure function of its arguments: day partitions,
totals, list filters and pagination. Live queries call these on every
re-evaluation, so nothing is cached.
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from ..core.errors import ValidationError
from ..store.models import SessionRecord, Task

T = TypeVar("T")

STATUS_FILTERS: tuple[str, ...] = ("all", "active", "completed")
DEFAULT_PAGE_SIZE = 10


# ---- days ----

def local_day(ts: float, tz: dt.tzinfo | None = None) -> dt.date:
    """Calendar day of an epoch timestamp (local time zone unless tz is given)."""
    return dt.datetime.fromtimestamp(ts, tz).date()


def today(now: float, tz: dt.tzinfo | None = None) -> dt.date:
    return local_day(now, tz)


def yesterday(now: float, tz: dt.tzinfo | None = None) -> dt.date:
    return local_day(now, tz) - dt.timedelta(days=1)


def parse_due_date(raw: str | None) -> dt.date | None:
    if not raw:
        return None
    try:
        return dt.date.fromisoformat(raw)
    except ValueError:
        return None


def task_day(task: Task, tz: dt.tzinfo | None = None) -> dt.date:
    """Day a task belongs to: its due date when set, else the day it was created."""
    due = parse_due_date(task.due_date)
    if due is not None:
        return due
    return local_day(task.created_at, tz)


def record_day(record: SessionRecord, tz: dt.tzinfo | None = None) -> dt.date:
    return local_day(record.created_at, tz)


def partition_by_day(items: Iterable[T], key: Callable[[T], dt.date]) -> dict[dt.date, list[T]]:
    """Group items by day, keeping first-seen day order and item order."""
    groups: dict[dt.date, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups


def records_on(
    records: Iterable[SessionRecord], day: dt.date, tz: dt.tzinfo | None = None
) -> list[SessionRecord]:
    return [r for r in records if record_day(r, tz) == day]


def tasks_on(tasks: Iterable[Task], day: dt.date, tz: dt.tzinfo | None = None) -> list[Task]:
    return [t for t in tasks if task_day(t, tz) == day]


def total_duration(records: Iterable[SessionRecord]) -> int:
    return sum(int(r.duration) for r in records)


# ---- ordering ----

def sort_tasks(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: (t.order, t.id))


def sort_records(records: Iterable[SessionRecord]) -> list[SessionRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


# ---- filters ----

def filter_by_status(tasks: Iterable[Task], status: str = "all") -> list[Task]:
    status = (status or "all").strip().lower()
    if status not in STATUS_FILTERS:
        raise ValidationError(f"Invalid status filter: {status}. Use all/active/completed.")
    if status == "active":
        return [t for t in tasks if not t.completed]
    if status == "completed":
        return [t for t in tasks if t.completed]
    return list(tasks)


def filter_by_text(tasks: Iterable[Task], query: str = "") -> list[Task]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(tasks)
    return [t for t in tasks if needle in t.title.lower()]


def filter_by_day(tasks: Iterable[Task], day: dt.date | None, tz: dt.tzinfo | None = None) -> list[Task]:
    if day is None:
        return list(tasks)
    return tasks_on(tasks, day, tz)


def filter_tasks(
    tasks: Iterable[Task],
    *,
    status: str = "all",
    query: str = "",
    day: dt.date | None = None,
    tz: dt.tzinfo | None = None,
) -> list[Task]:
    """
    Apply the three list filters.

    Each filter keeps the relative order of its input, so the result does
    not depend on the order the filters are applied in.
    """
    out = filter_by_status(tasks, status)
    out = filter_by_text(out, query)
    return filter_by_day(out, day, tz)


# ---- pagination ----

def page_count(total: int, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    if page_size <= 0:
        raise ValidationError("page_size must be positive")
    return math.ceil(max(0, total) / page_size)


def paginate(items: Sequence[T], page: int, page_size: int = DEFAULT_PAGE_SIZE) -> list[T]:
    """Page numbers start at 1. Out of range pages are empty."""
    if page_size <= 0:
        raise ValidationError("page_size must be positive")
    if page < 1:
        return []
    start = (page - 1) * page_size
    return list(items[start : start + page_size])


# ---- presentation helpers ----

def format_duration(seconds: int) -> str:
    """HH:MM:SS (hours keep growing past 99)."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def greeting(hour: int) -> str:
    if 5 <= hour < 12:
        return "Good morning"
    if 12 <= hour < 17:
        return "Good afternoon"
    if 17 <= hour < 20:
        return "Good evening"
    return "Good night"


# ---- summaries ----

@dataclass(slots=True, frozen=True)
class DaySummary:
    owner_id: str
    day: dt.date
    tasks: list[Task] = field(default_factory=list)
    records: list[SessionRecord] = field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.completed)

    @property
    def task_count(self) -> int:
        return len(self.tasks)

    @property
    def total_seconds(self) -> int:
        return total_duration(self.records)


def day_summary(
    owner_id: str,
    tasks: Iterable[Task],
    records: Iterable[SessionRecord],
    day: dt.date,
    tz: dt.tzinfo | None = None,
) -> DaySummary:
    return DaySummary(
        owner_id=owner_id,
        day=day,
        tasks=sort_tasks(tasks_on(tasks, day, tz)),
        records=sort_records(records_on(records, day, tz)),
    )


def history(
    records: Iterable[SessionRecord],
    which: str,
    now: float,
    tz: dt.tzinfo | None = None,
) -> list[SessionRecord]:
    """Session history tab: "today" or "yesterday", newest first."""
    which = (which or "today").strip().lower()
    if which == "today":
        day = today(now, tz)
    elif which == "yesterday":
        day = yesterday(now, tz)
    else:
        raise ValidationError("Use today or yesterday.")
    return sort_records(records_on(records, day, tz))


def render_summary_text(summary: DaySummary) -> str:
    """Plain text day summary (what the image export would show)."""
    lines = [
        f"Hi {summary.owner_id}!",
        "Thanks for today.",
        "",
        summary.day.strftime("%B %d, %Y"),
        f"Completed tasks: {summary.completed_count}/{summary.task_count}",
        f"Total time today: {format_duration(summary.total_seconds)}",
        "",
        "Today's tasks:",
    ]
    if not summary.tasks:
        lines.append("  (no tasks for today)")
    for t in summary.tasks:
        mark = "x" if t.completed else " "
        lines.append(f"  [{mark}] {t.title}")
    return "\n".join(lines)


class TextSummaryRenderer:
    """SummaryRenderer writing render_summary_text() to a UTF-8 file."""

    def render(self, summary: DaySummary, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_summary_text(summary) + "\n", "utf-8")
        return path
