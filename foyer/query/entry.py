"""
Foyer — Query Entries
======================

What:  The cached state of one query key and the handles given to callers.

State machine (one settlement per version):

    ┌─────────┐  operation returns   ┌──────────┐
    │ pending │─────────────────────▶│ resolved │
    └─────────┘                      └──────────┘
         │      operation raises     ┌──────────┐
         └──────────────────────────▶│ rejected │
                                     └──────────┘
    invalidate / refetch: version += 1, back to pending

Invariants:
    value is set only while resolved, error only while rejected.
    A completion stamped with an older version never changes the entry.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from foyer.exceptions import QueryExecutionError, QueryPendingError
from foyer.query.key import QueryKey

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Outcome = Tuple[Any, Optional[QueryExecutionError]]


class QueryState(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class StaleWriteDiscarded:
    """A completion for ``version`` arrived after the entry moved to ``current_version``."""

    key: QueryKey
    version: int
    current_version: int

    def __str__(self) -> str:
        return (
            f"StaleWriteDiscarded(key={self.key}, version={self.version}, "
            f"current_version={self.current_version})"
        )


class QueryHandle:
    """
    Tracks one execution cycle of a query.

    ``await handle`` returns the cycle's value or raises its
    ``QueryExecutionError``. Every caller deduplicated onto the same cycle
    gets a handle over the same future, so all of them settle identically.
    Awaiting is shielded: cancelling one awaiting task leaves the cycle and
    the other awaiters untouched.
    """

    __slots__ = ("key", "version", "_future")

    def __init__(self, key: QueryKey, version: int, future: "asyncio.Future[Outcome]"):
        self.key = key
        self.version = version
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> Any:
        """Synchronous access to a settled cycle."""
        if not self._future.done():
            raise QueryPendingError(self.key)
        value, error = self._future.result()
        if error is not None:
            # Fresh traceback per raise; the cached error is shared
            raise error.with_traceback(None)
        return value

    async def _wait(self) -> Any:
        await asyncio.shield(self._future)
        return self.result()

    def __await__(self):
        return self._wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<QueryHandle {self.key} v{self.version} {state}>"


class QueryEntry:
    """Mutable per-key record owned by ``QueryCache``."""

    def __init__(self, key: QueryKey, operation: Operation):
        self.key = key
        self.operation = operation
        self.state = QueryState.PENDING
        self.value: Any = None
        self.error: Optional[QueryExecutionError] = None
        self.version = 0
        self.subscriber_count = 0
        self.stale = False
        self.pinned = False
        # Current cycle re-runs the stored operation after invalidation
        self.refreshing = False
        self.settled_at: Optional[float] = None
        self.future: Optional["asyncio.Future[Outcome]"] = None
        self.eviction_timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[["QueryEntry"], None]] = []

    def begin(self, loop: asyncio.AbstractEventLoop) -> "asyncio.Future[Outcome]":
        """Enter a new pending cycle at the current version."""
        self.state = QueryState.PENDING
        self.value = None
        self.error = None
        self.stale = False
        self.future = loop.create_future()
        self.notify()
        return self.future

    def settle(self, value: Any, error: Optional[QueryExecutionError], now: float) -> None:
        if error is None:
            self.state = QueryState.RESOLVED
            self.value = value
            self.error = None
        else:
            self.state = QueryState.REJECTED
            self.value = None
            self.error = error
        self.settled_at = now
        self.notify()

    def handle(self) -> QueryHandle:
        return QueryHandle(self.key, self.version, self.future)

    # ── Listeners ─────────────────────────────────────────────────────────

    def add_listener(self, listener: Callable[["QueryEntry"], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[["QueryEntry"], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                # Remaining listeners still run
                logger.exception("Query listener failed for %s", self.key)

    def __repr__(self) -> str:
        return (
            f"<QueryEntry {self.key} {self.state.value} v{self.version} "
            f"subscribers={self.subscriber_count}>"
        )
