"""
Foyer — Rate Limiting Stage
=============================

What:  Per-client sliding-window request limit.
How:   ``RateLimiter`` instances are stage handlers. Each client address
       owns a deque of request times; times older than the window are
       popped from the left before counting. A full window short-circuits
       the request with a 429 ``TerminalResponse``.
When:  Declared after the request id stage, so a rejected request still
       carries ``X-Request-ID`` but never reaches the route handler.

State lives in this process only; run one limiter per worker.
"""

import logging
import math
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from foyer.pipeline import RequestContext, TerminalResponse

logger = logging.getLogger(__name__)

UNLIMITED_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

# Idle clients are dropped every this many admitted requests
SWEEP_INTERVAL = 1000


class RateLimiter:
    """Sliding window limiter, callable as an on_request stage."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._admitted = 0

    def __call__(self, context: RequestContext) -> Optional[TerminalResponse]:
        if context.request.path in UNLIMITED_PATHS:
            return None

        client = context.request.client or "unknown"
        now = self._clock()
        window = self._windows.setdefault(client, deque())
        horizon = now - self.window_seconds
        while window and window[0] <= horizon:
            window.popleft()

        if len(window) >= self.max_requests:
            return self._reject(context, client, math.ceil(window[0] - horizon) or 1)

        window.append(now)
        self._admitted += 1
        if self._admitted % SWEEP_INTERVAL == 0:
            self._sweep(horizon)
        return None

    def _reject(self, context: RequestContext, client: str, retry_after: int) -> TerminalResponse:
        logger.warning(
            "Rate limit hit for %s: %d requests within %ds",
            client,
            self.max_requests,
            self.window_seconds,
        )
        return TerminalResponse.json(
            {
                "error": "rate_limit_exceeded",
                "message": f"Too many requests. Retry in {retry_after} seconds.",
                "details": {"retry_after": retry_after},
                "request_id": context.locals.get("request_id", ""),
            },
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )

    def _sweep(self, horizon: float) -> None:
        idle = [client for client, window in self._windows.items() if not window or window[-1] <= horizon]
        for client in idle:
            del self._windows[client]
        if idle:
            logger.debug("Dropped rate limit state for %d idle clients", len(idle))
