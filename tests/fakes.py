# tests/fakes.py

from __future__ import annotations

from dataclasses import dataclass, field

from todo_timer.store.models import Collection


class FakeClock:
    """
    Manually advanced epoch clock.

    Passed as `clock=` to the store and the services so durations are exact.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@dataclass(slots=True)
class RecordingListener:
    """ChangeListener that just remembers what was published."""

    published: list[tuple[Collection, ...]] = field(default_factory=list)

    def publish(self, *collections: Collection) -> None:
        self.published.append(tuple(collections))

    def flat(self) -> set[Collection]:
        return {c for batch in self.published for c in batch}


@dataclass(slots=True)
class Emitted:
    lines: list[str] = field(default_factory=list)

    def __call__(self, text: str) -> None:
        self.lines.append(text)
