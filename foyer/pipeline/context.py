"""
Foyer — Request Context
========================

What:  Immutable request facts plus the mutable, request-scoped scratch
       space ("locals") and the response header collection.
How:   One ``RequestContext`` is constructed per inbound request, passed to
       every stage and to the route handler, then closed when the response
       is emitted. Closing clears ``locals`` and locks both ``locals`` and
       ``response_headers`` against further use.
Who:   Built by ``PipelineMiddleware`` (Starlette) or by callers of
       ``MiddlewarePipeline.handle`` directly.

Concurrency:
    A context belongs to exactly one request. Stages of one request never
    run concurrently, so ``locals`` needs no locking. Never store a context
    anywhere that outlives the request.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from starlette.datastructures import URL, MutableHeaders

from foyer.exceptions import ContextClosedError
from foyer.pipeline.response import HeadersInput, build_headers


@dataclass(frozen=True)
class RequestInfo:
    """
    Request facts: method, URL, header multimap and peer address.

    The record itself is frozen. ``headers`` stays a mutable multimap so
    stages can rewrite inbound headers (cookies included) for the handler.
    """

    method: str
    url: URL
    headers: MutableHeaders
    client: Optional[str] = None

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        headers: HeadersInput = None,
        client: Optional[str] = None,
    ) -> "RequestInfo":
        return cls(
            method=method.upper(),
            url=URL(url),
            headers=build_headers(headers),
            client=client,
        )

    @property
    def path(self) -> str:
        return self.url.path


class RequestContext:
    """
    Per-request state threaded through the pipeline.

    Attributes:
        request:          RequestInfo for this request
        response_headers: headers that will be sent with the final response
        locals:           open key → value mapping shared between stages
        status_code:      status of the handler (or terminal) response,
                          set before ``on_before_response`` stages run
    """

    def __init__(self, request: RequestInfo):
        self.request = request
        self.status_code: Optional[int] = None
        self._locals: Dict[str, Any] = {}
        self._response_headers = MutableHeaders()
        self._closed = False

    @property
    def locals(self) -> Dict[str, Any]:
        if self._closed:
            raise ContextClosedError("locals")
        return self._locals

    @property
    def response_headers(self) -> MutableHeaders:
        if self._closed:
            raise ContextClosedError("response_headers")
        return self._response_headers

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Mark the response as emitted and discard ``locals``."""
        if self._closed:
            return
        self._closed = True
        self._locals.clear()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RequestContext {self.request.method} {self.request.url.path} ({state})>"
