# store/live_query.py

"""
Live queries over the store.

A subscription is an explicit object: a query function, the collections it
depends on and an optional callback. Every store commit publishes the touched
collections; the engine re-runs the affected queries and pushes a result only
when it differs from the last delivered one.

Store calls usually run in worker threads (asyncio.to_thread). When the engine
is bound to an event loop, publishes coming from other threads are marshalled
onto the loop and coalesced: a burst of commits produces one re-evaluation
that sees the final state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from typing import Any

from ..core.errors import ValidationError
from ..core.ports import QueryFn, ResultCallback
from .models import Collection

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by LiveQueryEngine.subscribe."""

    def __init__(
        self,
        engine: LiveQueryEngine,
        query_fn: QueryFn,
        dependencies: frozenset[Collection],
        on_result: ResultCallback | None,
    ) -> None:
        self._engine = engine
        self._query_fn = query_fn
        self._on_result = on_result
        self.dependencies = dependencies
        self.active = True
        self.deliveries = 0
        self._current: Any = None

    @property
    def current(self) -> Any:
        """Latest result delivered (or the initial evaluation)."""
        return self._current

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._engine._remove(self)

    def _refresh(self) -> bool:
        try:
            result = self._query_fn()
        except Exception:
            logger.exception("Live query failed deps=%s", sorted(d.value for d in self.dependencies))
            return False

        # unsubscribe() may have run while the query was evaluated
        if not self.active or result == self._current:
            return False

        self._current = result
        self.deliveries += 1
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("Live query subscriber raised")
        return True


class LiveQueryEngine:
    """Publish/subscribe registry keyed by collection name."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._subs: list[Subscription] = []
        self._dirty: set[Collection] = set()
        self._flush_scheduled = False
        self._lock = threading.Lock()

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Deliver on this loop from now on (the running loop by default)."""
        self._loop = loop or asyncio.get_running_loop()

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    def subscribe(
        self,
        query_fn: QueryFn,
        dependencies: Iterable[Collection | str],
        on_result: ResultCallback | None = None,
    ) -> Subscription:
        """
        Register a live query.

        query_fn is evaluated right away; its result is available as
        Subscription.current. on_result is only called for later changes.
        """
        deps = frozenset(Collection(d) for d in dependencies)
        if not deps:
            raise ValidationError("a live query needs at least one dependency")

        sub = Subscription(self, query_fn, deps, on_result)
        sub._current = query_fn()
        self._subs.append(sub)
        logger.debug("Live query subscribed deps=%s total=%s", sorted(d.value for d in deps), len(self._subs))
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            pass

    def _on_loop_thread(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def publish(self, *collections: Collection | str) -> None:
        """Called by the store after each committed mutation."""
        with self._lock:
            self._dirty.update(Collection(c) for c in collections)
            loop = self._loop
            defer = loop is not None and not loop.is_closed() and not self._on_loop_thread(loop)
            if defer:
                if self._flush_scheduled:
                    return
                self._flush_scheduled = True

        if defer and loop is not None:
            loop.call_soon_threadsafe(self.flush)
        else:
            self.flush()

    def flush(self) -> int:
        """Re-evaluate subscriptions touched since the last flush. Returns deliveries."""
        with self._lock:
            dirty = self._dirty
            self._dirty = set()
            self._flush_scheduled = False

        if not dirty:
            return 0

        delivered = 0
        for sub in list(self._subs):
            if sub.active and sub.dependencies & dirty:
                if sub._refresh():
                    delivered += 1
        return delivered

    def refresh_all(self) -> int:
        """Force every subscription to re-run (used after a backup import)."""
        with self._lock:
            self._dirty.update(Collection)
        return self.flush()

    def close(self) -> None:
        for sub in list(self._subs):
            sub.unsubscribe()
