"""
Foyer — Access Logging Stages
===============================

What:  One access log line per request, plus an ``X-Response-Time`` header.
How:   Two stages that share ``locals``. ``start_timer`` (on_request) stores
       a monotonic start time. ``log_access`` (on_before_response) reads
       it back, stamps the header and logs under ``foyer.access``.
When:  ``start_timer`` runs after the request id stage; ``log_access`` runs
       last so it sees the final status and headers.

Requests short-circuited during on_request never reach ``log_access``.
Request bodies, cookies and auth headers are never logged.
"""

import logging
import time

from foyer.pipeline import RequestContext

logger = logging.getLogger("foyer.access")

# Timed but not logged
QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def start_timer(context: RequestContext) -> None:
    context.locals["started_at"] = time.perf_counter()


def log_access(context: RequestContext) -> None:
    started_at = context.locals.get("started_at")
    if started_at is None:
        return

    elapsed_ms = (time.perf_counter() - started_at) * 1000
    context.response_headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"

    request = context.request
    if request.path in QUIET_PATHS:
        return

    fields = {
        "request_id": context.locals.get("request_id", ""),
        "method": request.method,
        "path": request.path,
        "status": context.status_code or 0,
        "duration_ms": round(elapsed_ms, 2),
        "client_ip": request.client or "unknown",
    }
    logger.log(
        _level_for(fields["status"]),
        "%(method)s %(path)s %(status)d %(duration_ms).1fms [%(request_id)s] from %(client_ip)s",
        fields,
        extra=fields,
    )
