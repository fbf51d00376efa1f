"""
Foyer — Readable Slots
=======================

What:  The ``{pending, value, error}`` view a reactive consumer holds on a
       query entry.
How:   A slot reads straight through to its entry, so its tri-state always
       matches the entry's latest settled version. Listeners are called on
       every transition; ``wait()`` resolves at the next settled state.
Who:   Returned by ``QueryCache.subscribe`` / ``QueryCache.watch``.

Presentation contract (external):
    pending is True     → show loading
    error is not None   → show failure
    otherwise           → render value
"""

import asyncio
from typing import TYPE_CHECKING, Any, Callable, List, NamedTuple, Optional

from foyer.exceptions import QueryExecutionError, QueryPendingError
from foyer.query.entry import QueryEntry, QueryState
from foyer.query.key import QueryKey

if TYPE_CHECKING:
    from foyer.query.cache import QueryCache


class SlotState(NamedTuple):
    pending: bool
    value: Any
    error: Optional[QueryExecutionError]
    version: int


SlotListener = Callable[[SlotState], None]


class ReadableSlot:
    """Live subscription to one query entry."""

    def __init__(self, cache: "QueryCache", entry: QueryEntry):
        self._cache = cache
        self._entry = entry
        self._listeners: List[SlotListener] = []
        self._waiters: List["asyncio.Future[SlotState]"] = []
        self._closed = False
        entry.add_listener(self._on_change)

    @property
    def key(self) -> QueryKey:
        return self._entry.key

    @property
    def entry(self) -> QueryEntry:
        return self._entry

    @property
    def pending(self) -> bool:
        return self._entry.state is QueryState.PENDING

    @property
    def value(self) -> Any:
        return self._entry.value

    @property
    def error(self) -> Optional[QueryExecutionError]:
        return self._entry.error

    @property
    def version(self) -> int:
        return self._entry.version

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> SlotState:
        return SlotState(
            pending=self.pending,
            value=self.value,
            error=self.error,
            version=self.version,
        )

    def read(self) -> Any:
        """
        Synchronous read for a reactive renderer.

        Raises:
            QueryPendingError: no settled value yet (show loading, re-read on change)
            QueryExecutionError: the current cycle failed
        """
        if self.pending:
            raise QueryPendingError(self.key)
        if self.error is not None:
            raise self.error.with_traceback(None)
        return self.value

    async def wait(self) -> SlotState:
        """Return the current state if settled, otherwise wait for settlement."""
        if not self.pending:
            return self.snapshot()
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def add_listener(self, listener: SlotListener) -> SlotListener:
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: SlotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _on_change(self, entry: QueryEntry) -> None:
        state = self.snapshot()
        if not state.pending:
            for waiter in self._waiters:
                if not waiter.done():
                    waiter.set_result(state)
        for listener in list(self._listeners):
            listener(state)

    def close(self) -> None:
        """Stop receiving updates and release the subscription."""
        if self._closed:
            return
        self._closed = True
        self._entry.remove_listener(self._on_change)
        self._listeners.clear()
        for waiter in self._waiters:
            waiter.cancel()
        self._cache._release(self._entry)

    def __enter__(self) -> "ReadableSlot":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = self.snapshot()
        return (
            f"<ReadableSlot {self.key} pending={state.pending} "
            f"error={type(state.error).__name__ if state.error else None} v{state.version}>"
        )
