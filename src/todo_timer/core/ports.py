# src/todo_timer/core/ports.py

"""
Ports (interfaces) used by the core.

The store and services depend on Protocols instead of concrete implementations.
Tests swap in fakes for the change feed and the clock.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..services.views import DaySummary

Clock = Callable[[], float]
# Returns epoch seconds, like time.time.

QueryFn = Callable[[], Any]
ResultCallback = Callable[[Any], None]


class ChangeListener(Protocol):
    """Receives the collections touched by every committed store mutation."""

    def publish(self, *collections: Any) -> None: ...


class SummaryRenderer(Protocol):
    """
    Image export collaborator.

    Turns a day summary into a raster file. views.TextSummaryRenderer writes
    the plain text rendering; a raster renderer can be swapped in.
    """

    def render(self, summary: DaySummary, path: Path) -> Path: ...
