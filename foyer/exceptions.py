"""
Foyer — Custom Exception Hierarchy
====================================

What:  Application-specific exceptions for the request pipeline, the query
       cache, and the service layer.
How:   Each exception carries a human-readable message and an optional
       context dict. The pipeline and cache raise them; the Starlette
       adapter and the FastAPI exception handlers (main.py) turn them into
       JSON error responses.
Who:   Raised by pipeline stages, the query cache and services.
When:  During request processing and query execution.

Exception Hierarchy:
    FoyerError (base)
    ├── PipelineError
    │   ├── MiddlewareFailure        → stage raised (500 at the boundary)
    │   └── InvalidMiddlewareReturn  → stage returned a non-response (500)
    ├── ContextClosedError           → context touched after emit
    ├── QueryError
    │   ├── QueryExecutionError      → backing operation failed (502)
    │   ├── QueryPendingError        → synchronous read while pending
    │   └── UnknownQueryError        → subscribe to a key never invoked
    └── NotFoundError                → 404 Not Found

Propagation:
    Pipeline errors always reach the caller of the pipeline; nothing inside
    the pipeline recovers from them. Query errors are recorded on the cache
    entry and surface only to readers of that entry.
"""

from typing import Any, Dict, Optional


class FoyerError(Exception):
    """
    Base exception for all Foyer errors.

    Attributes:
        message:  Error description (safe to return in an API response)
        context:  Additional debug info (logged, not returned to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ══════════════════════════════════════════════════════════════════════════
# Pipeline errors
# ══════════════════════════════════════════════════════════════════════════

class PipelineError(FoyerError):
    """Base for errors raised while running middleware stages."""

    def __init__(
        self,
        message: str,
        stage: str,
        phase: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["stage"] = stage
        ctx["phase"] = phase
        super().__init__(message=message, context=ctx)
        self.stage = stage
        self.phase = phase


class MiddlewareFailure(PipelineError):
    """
    A stage handler raised during execution.

    The original exception is kept on ``cause`` and chained as
    ``__cause__`` by the pipeline (``raise ... from exc``).
    """

    def __init__(self, stage: str, phase: str, cause: BaseException):
        super().__init__(
            message=f"Middleware stage '{stage}' failed during {phase}: {cause}",
            stage=stage,
            phase=phase,
            context={"cause": type(cause).__name__},
        )
        self.cause = cause


class InvalidMiddlewareReturn(PipelineError):
    """
    A stage returned something that is neither ``None`` nor a
    ``TerminalResponse``. Treated as a programming error.
    """

    def __init__(self, stage: str, phase: str, value: Any):
        super().__init__(
            message=(
                f"Middleware stage '{stage}' returned {type(value).__name__} during "
                f"{phase}; expected TerminalResponse or None"
            ),
            stage=stage,
            phase=phase,
            context={"returned_type": type(value).__name__},
        )
        self.value = value


class ContextClosedError(FoyerError):
    """Raised when locals or response headers are touched after the response was emitted."""

    def __init__(self, attribute: str):
        super().__init__(
            message=f"RequestContext.{attribute} is not available after the response was emitted",
            context={"attribute": attribute},
        )
        self.attribute = attribute


# ══════════════════════════════════════════════════════════════════════════
# Query cache errors
# ══════════════════════════════════════════════════════════════════════════

class QueryError(FoyerError):
    """Base for query cache errors. ``key`` is the QueryKey involved."""

    def __init__(
        self,
        message: str,
        key: Any,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["key"] = str(key)
        super().__init__(message=message, context=ctx)
        self.key = key


class QueryExecutionError(QueryError):
    """
    The operation backing a query entry failed.

    What:    Recorded on the entry as ``rejected`` and handed to every
             current and future reader of that version.
    Retry:   Never automatic. Callers retry through a fresh ``invoke`` after
             ``invalidate``.
    """

    def __init__(self, key: Any, cause: BaseException):
        super().__init__(
            message=f"Query {key} failed: {cause}",
            key=key,
            context={"cause": type(cause).__name__},
        )
        self.cause = cause


class QueryPendingError(QueryError):
    """
    Raised by ``ReadableSlot.read()`` while the entry has no settled value.

    A reactive layer catches this to show its loading state, then re-reads
    once the slot notifies.
    """

    def __init__(self, key: Any):
        super().__init__(message=f"Query {key} is still pending", key=key)


class UnknownQueryError(QueryError):
    """Raised when subscribing to a key the cache holds no entry for."""

    def __init__(self, key: Any):
        super().__init__(message=f"No cache entry for query {key}", key=key)


# ══════════════════════════════════════════════════════════════════════════
# Service errors
# ══════════════════════════════════════════════════════════════════════════

class NotFoundError(FoyerError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
