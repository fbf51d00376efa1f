"""
Foyer — Request ID Stage
==========================

What:  Assigns a correlation ID to each request and echoes it on the response.
How:   An on_request stage reads the incoming ``X-Request-ID`` header (or
       generates a short UUID), stores it in a ContextVar for loggers, in
       ``locals["request_id"]`` for later stages and handlers, and in the
       response headers.
When:  First stage of the on_request phase so every later stage can log it.
"""

import uuid
from contextvars import ContextVar

from foyer.config import settings
from foyer.pipeline import RequestContext

# Coroutine-local storage for the current request ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def assign_request_id(context: RequestContext) -> None:
    """
    Behavior:
        1. Use the client's request id header when present
        2. Otherwise generate an 8-char UUID prefix
        3. Publish it to the ContextVar, locals and response headers
    """
    header = settings.request_id_header
    rid = context.request.headers.get(header) or str(uuid.uuid4())[:8]

    request_id_var.set(rid)
    context.locals["request_id"] = rid
    context.response_headers[header] = rid
