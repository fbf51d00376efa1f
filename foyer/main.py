"""
Foyer — FastAPI Application Factory
=====================================

What:  Creates and configures the FastAPI application instance.
How:   ``create_app()`` builds the middleware pipeline from settings, mounts
       it through ``PipelineMiddleware``, registers exception handlers and
       routes, and returns the app.
Who:   Called by uvicorn (``uvicorn foyer.main:app``) and by the tests.

Application Architecture:
    ┌───────────────────────────────────────────────────────┐
    │                     FastAPI App                       │
    │                                                       │
    │  PipelineMiddleware                                   │
    │   on_request:         request_id → rate_limit → timer │
    │   on_before_response: access_log                      │
    │                                                       │
    │  Routes:                                              │
    │   GET/POST/PUT /api/posts…   POST /api/queries/…      │
    │   GET /health                                         │
    │                                                       │
    │  Exception Handlers:                                  │
    │   NotFound→404 │ QueryExecution→502 │ Exception→500   │
    └───────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, log the pipeline layout
    Shutdown: cancel in-flight queries and drop the cache
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from foyer import __version__
from foyer.config import settings
from foyer.exceptions import FoyerError, NotFoundError, QueryExecutionError
from foyer.middleware.logging import log_access, start_timer
from foyer.middleware.pipeline import PipelineMiddleware
from foyer.middleware.rate_limit import RateLimiter
from foyer.middleware.request_id import assign_request_id, request_id_var
from foyer.pipeline import MiddlewarePipeline, Phase, Stage
from foyer.routes import health, posts
from foyer.services.cache import query_cache

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before anything else logs.
    """
    logging.basicConfig(
        level=settings.log_level_number,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Pipeline
# ══════════════════════════════════════════════════════════════════════════

def build_pipeline() -> MiddlewarePipeline:
    """
    Assemble the process-wide stage lists from settings.

    Order within each phase is execution order.
    """
    return MiddlewarePipeline(
        on_request=[
            Stage("request_id", Phase.ON_REQUEST, assign_request_id),
            Stage(
                "rate_limit",
                Phase.ON_REQUEST,
                RateLimiter(
                    max_requests=settings.rate_limit_requests,
                    window_seconds=settings.rate_limit_window,
                ),
            ),
            Stage("access_timer", Phase.ON_REQUEST, start_timer),
        ],
        on_before_response=[
            Stage("access_log", Phase.ON_BEFORE_RESPONSE, log_access),
        ],
    )


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("%s %s starting up...", settings.app_name, __version__)
    logger.info("Pipeline: %r", app.state.pipeline)
    logger.info("Server ready at http://%s:%d", settings.host, settings.port)
    logger.info("=" * 60)

    yield

    logger.info("%s shutting down...", settings.app_name)
    await query_cache.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes and JSON error bodies.

    Handler hierarchy:
        NotFoundError        → 404 Not Found
        QueryExecutionError  → 404 when the query failed with NotFoundError,
                               otherwise 502 Bad Gateway
        FoyerError (base)    → 500 Internal Server Error
        Exception (fallback) → 500 Internal Server Error

    Pipeline failures never reach these handlers; PipelineMiddleware
    answers them itself.
    """

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body("not_found", exc.message))

    @app.exception_handler(QueryExecutionError)
    async def handle_query_error(request: Request, exc: QueryExecutionError):
        if isinstance(exc.cause, NotFoundError):
            return JSONResponse(
                status_code=404,
                content=_error_body("not_found", exc.cause.message),
            )
        logger.error(
            "[%s] Query %s failed: %s",
            request_id_var.get(""),
            exc.key,
            exc.cause,
            exc_info=exc.cause,
        )
        return JSONResponse(
            status_code=502,
            content=_error_body(
                "query_failed",
                "Upstream data could not be loaded. Please try again later.",
                {"query": exc.key.name},
            ),
        )

    @app.exception_handler(FoyerError)
    async def handle_foyer_error(request: Request, exc: FoyerError):
        logger.error(
            "[%s] %s: %s | Context: %s",
            request_id_var.get(""),
            type(exc).__name__,
            exc.message,
            exc.context,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(pipeline: Optional[MiddlewarePipeline] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        pipeline: stage lists to mount; defaults to ``build_pipeline()``.
    """
    app = FastAPI(
        title=f"{settings.app_name} API",
        description=(
            "Request-lifecycle middleware pipeline and deduplicating query cache, "
            "demonstrated on a small posts API."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline or build_pipeline()

    # Middleware executes in REVERSE order of addition:
    # PipelineMiddleware → GZip → CORS → routes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.request_id_header, "X-Response-Time", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(PipelineMiddleware, pipeline=app.state.pipeline)

    register_exception_handlers(app)

    app.include_router(posts.router)
    app.include_router(health.router)

    return app


app = create_app()
