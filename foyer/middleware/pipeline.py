"""
Foyer — Starlette Pipeline Adapter
====================================

What:  Mounts a ``MiddlewarePipeline`` on a Starlette/FastAPI application.
How:   A ``BaseHTTPMiddleware`` that, per request:
       1. builds a RequestContext from the ASGI request
       2. runs on_request stages; a terminal response is sent as-is
       3. hands rewritten request headers to the app and calls it
       4. merges the app's response headers into the context
       5. runs on_before_response stages and writes the final headers back
       6. closes the context
Who:   Registered once in ``create_app``; route handlers reach the context
       through the ``get_request_context`` dependency.

Failure handling:
    This adapter is the boundary that receives ``PipelineError``. It logs
    the failing stage and phase and answers with a generic JSON 500.
    Errors raised by route handlers are not touched here; FastAPI's
    exception handlers deal with them.
"""

import logging

from fastapi import Request
from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from foyer.exceptions import PipelineError
from foyer.pipeline import (
    MiddlewarePipeline,
    Phase,
    RequestContext,
    RequestInfo,
    TerminalResponse,
    merge_headers,
)

logger = logging.getLogger(__name__)


class PipelineMiddleware(BaseHTTPMiddleware):
    """Runs both pipeline phases around every HTTP request."""

    def __init__(self, app, pipeline: MiddlewarePipeline):
        super().__init__(app)
        self.pipeline = pipeline

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        context = RequestContext(
            RequestInfo(
                method=request.method,
                url=request.url,
                headers=MutableHeaders(raw=list(request.scope["headers"])),
                client=request.client.host if request.client else None,
            )
        )
        request.state.context = context

        try:
            terminal = await self.pipeline.run(Phase.ON_REQUEST, context)
            if terminal is not None:
                context.status_code = terminal.status_code
                return terminal.to_starlette(extra_headers=context.response_headers)

            # Stages may have rewritten inbound headers (cookies, auth, ...)
            request.scope["headers"] = list(context.request.headers.raw)

            response = await call_next(request)

            merge_headers(context.response_headers, response.headers)
            context.status_code = response.status_code

            terminal = await self.pipeline.run(Phase.ON_BEFORE_RESPONSE, context)
            if terminal is not None:
                return terminal.to_starlette(extra_headers=context.response_headers)

            response.raw_headers[:] = context.response_headers.raw
            return response

        except PipelineError as exc:
            return self._failure_response(context, exc)

        finally:
            context.close()

    @staticmethod
    def _failure_response(context: RequestContext, exc: PipelineError) -> Response:
        rid = context.locals.get("request_id", "")
        logger.error(
            "[%s] Middleware failure in stage '%s' (%s): %s",
            rid,
            exc.stage,
            exc.phase,
            exc.message,
            exc_info=exc,
        )
        return TerminalResponse.json(
            {
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
            status_code=500,
        ).to_starlette(extra_headers=context.response_headers)


def get_request_context(request: Request) -> RequestContext:
    """
    FastAPI dependency returning the pipeline context of the current request.

    Usage:
        async def handler(context: RequestContext = Depends(get_request_context)):
            user = context.locals["user"]
    """
    context = getattr(request.state, "context", None)
    if context is None:
        raise RuntimeError("PipelineMiddleware is not installed on this application")
    return context
