"""
Foyer — Query Cache
====================

What:  Process-wide cache that deduplicates invocations of identified async
       operations and exposes their results to synchronous readers.
How:   One ``QueryEntry`` per ``QueryKey``. ``invoke`` starts the operation
       as an asyncio task only when no usable cycle exists; everybody else
       gets a handle on the in-flight (or settled) cycle. ``invalidate``
       bumps versions so late completions of old cycles are dropped.
Who:   Route handlers and services call ``invoke`` (usually through the
       ``query`` decorator); reactive consumers call ``watch``/``subscribe``.

Dedup algorithm (invoke):
    no entry                → create pending entry, run operation
    entry stale / expired   → new cycle, run operation
    refresh pending, new op → new cycle with the new operation
    entry pending           → return in-flight handle
    entry resolved/rejected → return settled handle

Concurrency:
    All bookkeeping (lookup, creation, version bumps, settlement) runs
    inside a single event-loop step with no ``await`` in between, so two
    concurrent ``invoke`` calls for one key can never both start a cycle
    and two completions can never both settle the same version. The cache
    must be used from one event loop.

Eviction policy:
    An entry with no subscribers and no pin is removed ``eviction_delay``
    seconds after it settles or loses its last subscriber (0 = at once,
    None = never). A removed key's next invoke runs the operation afresh.
"""

import asyncio
import functools
import inspect
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Set, Union

from foyer.exceptions import QueryExecutionError, UnknownQueryError
from foyer.query.entry import (
    Operation,
    QueryEntry,
    QueryHandle,
    QueryState,
    StaleWriteDiscarded,
)
from foyer.query.key import KeyLike, KeyPredicate, QueryKey, as_key
from foyer.query.slot import ReadableSlot

logger = logging.getLogger(__name__)

InvalidationTarget = Union[KeyLike, KeyPredicate, Iterable[Union[KeyLike, KeyPredicate]], None]


def _same_operation(a: Operation, b: Operation) -> bool:
    if isinstance(a, functools.partial) and isinstance(b, functools.partial):
        return a.func is b.func and a.args == b.args and a.keywords == b.keywords
    return a is b or a == b


def _matcher(target: InvalidationTarget) -> KeyPredicate:
    if target is None:
        return lambda key: True
    if isinstance(target, QueryKey):
        return lambda key: key == target
    if isinstance(target, str):
        return lambda key: key.name == target
    if callable(target):
        return target
    matchers = [_matcher(item) for item in target]
    return lambda key: any(match(key) for match in matchers)


class QueryCache:
    """
    Deduplicating cache for async server functions.

    Args:
        eviction_delay: seconds an idle entry survives; 0 evicts immediately,
                        None disables eviction
        stale_after:    seconds after settlement at which the next invoke
                        refetches; None means only invalidation makes an
                        entry stale
    """

    def __init__(
        self,
        eviction_delay: Optional[float] = 180.0,
        stale_after: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.eviction_delay = eviction_delay
        self.stale_after = stale_after
        self._clock = clock
        self._entries: Dict[QueryKey, QueryEntry] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._cancelled: Set["asyncio.Task[None]"] = set()
        self._executions = 0
        self._dedup_hits = 0
        self._stale_writes = 0
        self._evictions = 0

    # ══════════════════════════════════════════════════════════════════════
    # Invocation
    # ══════════════════════════════════════════════════════════════════════

    def invoke(self, key: KeyLike, operation: Operation) -> QueryHandle:
        """
        Return a handle for ``key``, running ``operation`` only if needed.

        Must be called with a running event loop.
        """
        key = as_key(key)
        entry = self._entries.get(key)

        if entry is None:
            entry = QueryEntry(key, operation)
            self._entries[key] = entry
            self._execute(entry, operation)
            return entry.handle()

        if self._is_stale(entry):
            if not entry.stale:
                # expired by age rather than invalidated
                entry.version += 1
            self._execute(entry, operation)
            return entry.handle()

        if (
            entry.state is QueryState.PENDING
            and entry.refreshing
            and not _same_operation(operation, entry.operation)
        ):
            # Invalidation refetch superseded by a caller-supplied operation
            entry.version += 1
            self._execute(entry, operation)
            return entry.handle()

        self._dedup_hits += 1
        if entry.subscriber_count == 0 and entry.state is not QueryState.PENDING:
            self._schedule_eviction(entry)
        return entry.handle()

    def get(self, key: KeyLike) -> Optional[QueryEntry]:
        return self._entries.get(as_key(key))

    def __contains__(self, key: KeyLike) -> bool:
        return as_key(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def query(self, name: str) -> Callable[[Callable[..., Any]], Callable[..., QueryHandle]]:
        """
        Decorator turning an async function into a cached server function.

        Usage:
            @cache.query("post")
            async def get_post(post_id: int) -> Post: ...

            post = await get_post(1)          # deduplicated per argument tuple
            cache.invalidate(get_post.key)    # every get_post entry
            cache.invalidate(get_post.key_for(1))
        """

        def decorator(fn: Callable[..., Any]) -> Callable[..., QueryHandle]:
            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> QueryHandle:
                key = QueryKey.of(name, *args, **kwargs)
                return self.invoke(key, functools.partial(fn, *args, **kwargs))

            wrapper.key = name
            wrapper.key_for = functools.partial(QueryKey.of, name)
            return wrapper

        return decorator

    # ══════════════════════════════════════════════════════════════════════
    # Execution cycles
    # ══════════════════════════════════════════════════════════════════════

    def _is_stale(self, entry: QueryEntry) -> bool:
        if entry.stale:
            return True
        if self.stale_after is None or entry.state is QueryState.PENDING:
            return False
        return entry.settled_at is not None and (
            self._clock() - entry.settled_at >= self.stale_after
        )

    def _execute(self, entry: QueryEntry, operation: Optional[Operation] = None) -> None:
        if operation is not None:
            entry.operation = operation
        entry.refreshing = operation is None
        loop = asyncio.get_running_loop()
        self._cancel_eviction(entry)
        version = entry.version
        future = entry.begin(loop)
        self._executions += 1
        logger.debug("Executing query %s (version %d)", entry.key, version)

        task = loop.create_task(self._run(entry, version, entry.operation, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(
        self,
        entry: QueryEntry,
        version: int,
        operation: Operation,
        future: asyncio.Future,
    ) -> None:
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError as exc:
            if asyncio.current_task() in self._cancelled:
                if not future.done():
                    future.cancel()
                raise
            # The operation aborted its own work; readers see a rejection
            outcome = (None, self._rejection(entry, version, exc))
        except Exception as exc:
            outcome = (None, self._rejection(entry, version, exc))
        else:
            outcome = (result, None)

        # Handles of this cycle always receive its own outcome
        if not future.done():
            future.set_result(outcome)
        self._settle(entry, version, *outcome)

    @staticmethod
    def _rejection(entry: QueryEntry, version: int, exc: BaseException) -> QueryExecutionError:
        error = QueryExecutionError(entry.key, exc)
        error.__cause__ = exc
        logger.warning("Query %s (version %d) failed: %r", entry.key, version, exc)
        return error

    def _settle(
        self,
        entry: QueryEntry,
        version: int,
        value: Any,
        error: Optional[QueryExecutionError],
    ) -> None:
        if self._entries.get(entry.key) is not entry:
            logger.debug("Query %s settled after eviction; result dropped", entry.key)
            return
        if version != entry.version:
            self._stale_writes += 1
            logger.debug(
                "%s",
                StaleWriteDiscarded(entry.key, version, entry.version),
            )
            return
        entry.settle(value, error, self._clock())
        if entry.subscriber_count == 0:
            self._schedule_eviction(entry)

    # ══════════════════════════════════════════════════════════════════════
    # Invalidation
    # ══════════════════════════════════════════════════════════════════════

    def invalidate(self, target: InvalidationTarget = None) -> int:
        """
        Bump the version of every matching entry.

        ``target`` may be a QueryKey, a query name (all argument tuples), a
        predicate over QueryKey, an iterable of those, or None for every
        entry. Subscribed entries refetch immediately with their stored
        operation; unsubscribed entries refetch on their next invoke.

        Returns:
            Number of entries invalidated.
        """
        match = _matcher(target)
        entries = [entry for entry in self._entries.values() if match(entry.key)]
        for entry in entries:
            entry.version += 1
            entry.stale = True
            if entry.subscriber_count > 0:
                self._execute(entry)
            else:
                self._schedule_eviction(entry)
        if entries:
            logger.debug("Invalidated %d query entries", len(entries))
        return len(entries)

    # ══════════════════════════════════════════════════════════════════════
    # Subscriptions
    # ══════════════════════════════════════════════════════════════════════

    def subscribe(self, key: KeyLike) -> ReadableSlot:
        """
        Attach a reader to an existing entry.

        Raises:
            UnknownQueryError: the key was never invoked (or was evicted)
        """
        key = as_key(key)
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownQueryError(key)
        entry.subscriber_count += 1
        self._cancel_eviction(entry)
        return ReadableSlot(self, entry)

    def unsubscribe(self, slot: ReadableSlot) -> None:
        slot.close()

    def watch(self, key: KeyLike, operation: Operation) -> ReadableSlot:
        """``invoke`` followed by ``subscribe``: the reactive read of a query."""
        self.invoke(key, operation)
        return self.subscribe(key)

    def _release(self, entry: QueryEntry) -> None:
        entry.subscriber_count = max(0, entry.subscriber_count - 1)
        if entry.subscriber_count == 0:
            self._schedule_eviction(entry)

    # ══════════════════════════════════════════════════════════════════════
    # Retention
    # ══════════════════════════════════════════════════════════════════════

    def pin(self, key: KeyLike) -> None:
        entry = self._entries.get(as_key(key))
        if entry is None:
            raise UnknownQueryError(as_key(key))
        entry.pinned = True
        self._cancel_eviction(entry)

    def unpin(self, key: KeyLike) -> None:
        entry = self._entries.get(as_key(key))
        if entry is None:
            return
        entry.pinned = False
        self._schedule_eviction(entry)

    def evict(self, key: KeyLike) -> bool:
        entry = self._entries.get(as_key(key))
        if entry is None:
            return False
        self._evict(entry)
        return True

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            self._evict(entry)

    async def aclose(self) -> None:
        """Drop every entry and cancel in-flight operations (shutdown only)."""
        self.clear()
        tasks = list(self._tasks)
        self._cancelled.update(tasks)
        for task in tasks:
            task.cancel()
        try:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._cancelled.difference_update(tasks)

    def _schedule_eviction(self, entry: QueryEntry) -> None:
        self._cancel_eviction(entry)
        if entry.pinned or entry.subscriber_count > 0 or self.eviction_delay is None:
            return
        if self.eviction_delay <= 0:
            self._evict(entry)
            return
        loop = asyncio.get_running_loop()
        entry.eviction_timer = loop.call_later(
            self.eviction_delay, self._evict_if_idle, entry
        )

    def _cancel_eviction(self, entry: QueryEntry) -> None:
        if entry.eviction_timer is not None:
            entry.eviction_timer.cancel()
            entry.eviction_timer = None

    def _evict_if_idle(self, entry: QueryEntry) -> None:
        entry.eviction_timer = None
        if entry.subscriber_count == 0 and not entry.pinned:
            self._evict(entry)

    def _evict(self, entry: QueryEntry) -> None:
        self._cancel_eviction(entry)
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
            self._evictions += 1
            logger.debug("Evicted query %s", entry.key)

    # ══════════════════════════════════════════════════════════════════════
    # Introspection
    # ══════════════════════════════════════════════════════════════════════

    def stats(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in QueryState}
        for entry in self._entries.values():
            counts[entry.state.value] += 1
        return {
            "entries": len(self._entries),
            **counts,
            "executions": self._executions,
            "dedup_hits": self._dedup_hits,
            "stale_writes_discarded": self._stale_writes,
            "evictions": self._evictions,
        }
