"""
Foyer — Request Lifecycle Pipeline
====================================

Ordered, chainable interceptor stages around a route handler, with a
request-scoped context and early termination.

    from foyer.pipeline import MiddlewarePipeline, RequestContext, TerminalResponse
"""

from foyer.pipeline.context import RequestContext, RequestInfo
from foyer.pipeline.pipeline import MiddlewarePipeline, RouteHandler
from foyer.pipeline.response import ENTITY_HEADERS, TerminalResponse, build_headers, merge_headers
from foyer.pipeline.stage import Phase, Stage, create_middleware

__all__ = [
    "ENTITY_HEADERS",
    "MiddlewarePipeline",
    "Phase",
    "RequestContext",
    "RequestInfo",
    "RouteHandler",
    "Stage",
    "TerminalResponse",
    "build_headers",
    "create_middleware",
    "merge_headers",
]
