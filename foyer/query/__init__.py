"""
Foyer — Server-Function Query Cache
=====================================

Deduplicates concurrent and repeated calls of identified async operations
and exposes each result as a ``{pending, value, error}`` slot.

    from foyer.query import QueryCache, QueryKey
"""

from foyer.query.cache import QueryCache
from foyer.query.entry import QueryEntry, QueryHandle, QueryState, StaleWriteDiscarded
from foyer.query.key import QueryKey, canonicalize
from foyer.query.slot import ReadableSlot, SlotState

__all__ = [
    "QueryCache",
    "QueryEntry",
    "QueryHandle",
    "QueryKey",
    "QueryState",
    "ReadableSlot",
    "SlotState",
    "StaleWriteDiscarded",
    "canonicalize",
]
