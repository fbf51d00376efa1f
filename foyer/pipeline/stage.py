"""
Foyer — Middleware Stages
==========================

What:  A stage is one named interceptor bound to a lifecycle phase.
How:   A ``Stage`` record pairs a name and a phase with a handler
       ``handler(context) -> TerminalResponse | None``. Handlers may be
       plain functions or coroutine functions.

Usage:
    stages = create_middleware(
        on_request=[authenticate, load_user],
        on_before_response=add_security_headers,
    )
    pipeline = MiddlewarePipeline.from_stages(stages)
"""

import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from foyer.pipeline.context import RequestContext
from foyer.pipeline.response import TerminalResponse

StageResult = Optional[TerminalResponse]
StageHandler = Callable[[RequestContext], Union[StageResult, Awaitable[StageResult]]]


class Phase(str, enum.Enum):
    """Lifecycle point a stage runs at."""

    ON_REQUEST = "on_request"
    ON_BEFORE_RESPONSE = "on_before_response"


@dataclass(frozen=True)
class Stage:
    name: str
    phase: Phase
    handler: StageHandler

    def __post_init__(self):
        if not callable(self.handler):
            raise TypeError(f"Stage '{self.name}' handler is not callable")
        # Accept the plain string form as well ("on_request")
        object.__setattr__(self, "phase", Phase(self.phase))


def _stage_name(handler: Any) -> str:
    name = getattr(handler, "__name__", None)
    if name is None:
        name = type(handler).__name__
    return name


def _as_list(handlers: Union[StageHandler, Sequence[StageHandler], None]) -> List[StageHandler]:
    if handlers is None:
        return []
    if callable(handlers):
        return [handlers]
    return list(handlers)


def create_middleware(
    on_request: Union[StageHandler, Sequence[StageHandler], None] = None,
    on_before_response: Union[StageHandler, Sequence[StageHandler], None] = None,
    name: Optional[str] = None,
) -> List[Stage]:
    """
    Build stage records from plain callables.

    Each phase takes a single callable or a sequence of them; order is
    preserved. Stage names default to the callable's ``__name__``; when
    ``name`` is given it prefixes each stage name (``"auth.check_token"``).
    """
    stages = []
    for phase, handlers in (
        (Phase.ON_REQUEST, on_request),
        (Phase.ON_BEFORE_RESPONSE, on_before_response),
    ):
        for handler in _as_list(handlers):
            stage_name = _stage_name(handler)
            if name:
                stage_name = f"{name}.{stage_name}"
            stages.append(Stage(name=stage_name, phase=phase, handler=handler))
    return stages
