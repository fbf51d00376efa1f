"""
Foyer — Terminal Response
==========================

What:  The fully-formed response a stage returns to end the pipeline early,
       and the shape the pipeline emits as its final response.
How:   Status code + Starlette header multimap + opaque body. Converted to a
       Starlette ``Response`` only at the transport boundary.
"""

from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse, Response

HeadersInput = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]


def build_headers(headers: HeadersInput = None) -> MutableHeaders:
    """
    Create a mutable header multimap from a mapping or a sequence of pairs.

    A sequence of pairs keeps repeated keys (``set-cookie`` etc.) in order.
    """
    result = MutableHeaders()
    if headers is None:
        return result
    pairs = headers.items() if isinstance(headers, Mapping) else headers
    for key, value in pairs:
        result.append(key, value)
    return result


# Headers that describe a body; never carried over onto a different body
ENTITY_HEADERS = frozenset({"content-length", "content-type", "content-encoding"})


def merge_headers(
    target: MutableHeaders,
    source: Any,
    exclude: Iterable[str] = (),
) -> None:
    """
    Overlay ``source`` onto ``target``: every key present in ``source``
    replaces all of that key's values in ``target``. Other keys in
    ``target`` are left alone. Keys in ``exclude`` are skipped.
    """
    skipped = {k.lower() for k in exclude}
    pairs = [(k, v) for k, v in source.items() if k.lower() not in skipped]
    for key in {k.lower() for k, _ in pairs}:
        if key in target:
            del target[key]
    for key, value in pairs:
        target.append(key, value)


class TerminalResponse:
    """
    Status code, headers and body.

    Returning one of these from a stage short-circuits the pipeline. Route
    handlers driven through ``MiddlewarePipeline.handle`` return one too.
    """

    __slots__ = ("status_code", "headers", "body")

    def __init__(
        self,
        status_code: int = 200,
        headers: HeadersInput = None,
        body: Union[bytes, str] = b"",
    ):
        if not isinstance(status_code, int) or not 100 <= status_code <= 599:
            raise ValueError(f"Invalid HTTP status code: {status_code!r}")
        self.status_code = status_code
        self.headers = build_headers(headers)
        self.body = body

    @classmethod
    def json(
        cls,
        content: Any,
        status_code: int = 200,
        headers: HeadersInput = None,
    ) -> "TerminalResponse":
        rendered = JSONResponse(content)
        response = cls(status_code=status_code, headers=headers, body=rendered.body)
        response.headers["content-type"] = rendered.headers["content-type"]
        return response

    @classmethod
    def text(
        cls,
        content: str,
        status_code: int = 200,
        headers: HeadersInput = None,
    ) -> "TerminalResponse":
        response = cls(status_code=status_code, headers=headers, body=content)
        response.headers["content-type"] = "text/plain; charset=utf-8"
        return response

    @classmethod
    def redirect(
        cls,
        url: str,
        status_code: int = 302,
        headers: HeadersInput = None,
    ) -> "TerminalResponse":
        if status_code not in (301, 302, 303, 307, 308):
            raise ValueError(f"Invalid redirect status code: {status_code}")
        response = cls(status_code=status_code, headers=headers)
        response.headers["location"] = url
        return response

    @property
    def body_bytes(self) -> bytes:
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    def to_starlette(self, extra_headers: Optional[MutableHeaders] = None) -> Response:
        """
        Convert to a Starlette ``Response``.

        ``extra_headers`` (minus entity headers) are laid down first; this
        response's own headers override them per key.
        """
        response = Response(content=self.body_bytes, status_code=self.status_code)
        if extra_headers is not None:
            merge_headers(response.headers, extra_headers, exclude=ENTITY_HEADERS)
        merge_headers(response.headers, self.headers)
        return response

    def __repr__(self) -> str:
        return (
            f"TerminalResponse(status_code={self.status_code}, "
            f"headers={self.headers.items()!r}, body={len(self.body_bytes)} bytes)"
        )
