"""
Foyer — Shared Query Cache
============================

The process-wide ``QueryCache`` used by services. Retention and staleness
policies come from settings.
"""

from foyer.config import settings
from foyer.query import QueryCache

query_cache = QueryCache(
    eviction_delay=settings.query_eviction_delay,
    stale_after=settings.query_stale_after,
)
