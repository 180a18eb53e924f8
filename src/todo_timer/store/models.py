# store/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Collection(StrEnum):
    """
    Stored collections.

    The values double as SQLite table names and as the dependency keys
    used by live query subscriptions.
    """

    TASKS = "tasks"
    SESSION_RECORDS = "session_records"
    ACTIVE_SESSIONS = "active_sessions"


@dataclass(slots=True, frozen=True)
class Task:
    id: int
    owner_id: str
    title: str
    completed: bool
    created_at: float
    due_date: str | None  # yyyy-mm-dd
    order: int


@dataclass(slots=True, frozen=True)
class SessionRecord:
    """A finished timing session. Never updated after insert."""

    id: int
    owner_id: str
    duration: int  # seconds
    created_at: float
    task_id: int | None = None
    task_title: str | None = None


@dataclass(slots=True, frozen=True)
class ActiveSession:
    """
    The in-progress session of an owner (at most one).

    elapsed is a display value refreshed by the timer tick; start_time is
    the only authoritative field for computing durations.
    """

    id: int
    owner_id: str
    task_id: int
    task_title: str
    start_time: float
    elapsed: int = 0
