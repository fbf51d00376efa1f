"""
Foyer — Middleware Pipeline
=============================

What:  Runs the ordered stages of one phase against a RequestContext, with
       short-circuit and header-merge rules.
How:   Stage lists are fixed at construction (process startup). ``run``
       awaits each stage in declaration order; the first stage that returns
       a ``TerminalResponse`` ends the phase. ``handle`` drives a whole
       request: on_request → handler → on_before_response.

Lifecycle of one request through ``handle``:
    ┌────────────┐   ┌───────────┐   ┌────────────────────┐   ┌──────┐
    │ on_request │──▶│  handler  │──▶│ on_before_response │──▶│ emit │
    └────────────┘   └───────────┘   └────────────────────┘   └──────┘
          │ terminal                          │ terminal          ▲
          └───────────────────────────────────┴───────────────────┘

Header precedence (lowest → highest):
    on_request writes → handler response headers → on_before_response writes

Failure:
    A raising stage becomes ``MiddlewareFailure``; a stage returning
    anything other than ``None`` or a ``TerminalResponse`` becomes
    ``InvalidMiddlewareReturn``. Both propagate to the caller. A failed
    on_before_response phase rolls the response headers back to where they
    were when the phase started.
"""

import inspect
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

from starlette.datastructures import MutableHeaders

from foyer.exceptions import InvalidMiddlewareReturn, MiddlewareFailure, PipelineError
from foyer.pipeline.context import RequestContext
from foyer.pipeline.response import ENTITY_HEADERS, TerminalResponse, merge_headers
from foyer.pipeline.stage import Phase, Stage, StageHandler

logger = logging.getLogger(__name__)

RouteHandler = Callable[[RequestContext], Union[TerminalResponse, Awaitable[TerminalResponse]]]


def _coerce_stages(phase: Phase, stages: Iterable[Union[Stage, StageHandler]]) -> Tuple[Stage, ...]:
    result = []
    for stage in stages:
        if not isinstance(stage, Stage):
            name = getattr(stage, "__name__", type(stage).__name__)
            stage = Stage(name=name, phase=phase, handler=stage)
        elif stage.phase is not phase:
            raise ValueError(
                f"Stage '{stage.name}' is declared for {stage.phase.value}, "
                f"not {phase.value}"
            )
        result.append(stage)
    return tuple(result)


class MiddlewarePipeline:
    """
    Immutable, ordered stage lists for both phases.

    Stages may be given as ``Stage`` records or as bare callables; bare
    callables are named after their ``__name__``.
    """

    def __init__(
        self,
        on_request: Sequence[Union[Stage, StageHandler]] = (),
        on_before_response: Sequence[Union[Stage, StageHandler]] = (),
    ):
        self._stages: Dict[Phase, Tuple[Stage, ...]] = {
            Phase.ON_REQUEST: _coerce_stages(Phase.ON_REQUEST, on_request),
            Phase.ON_BEFORE_RESPONSE: _coerce_stages(
                Phase.ON_BEFORE_RESPONSE, on_before_response
            ),
        }

    @classmethod
    def from_stages(cls, stages: Iterable[Stage]) -> "MiddlewarePipeline":
        """Partition a flat list of stages by phase, keeping declaration order."""
        stages = list(stages)
        return cls(
            on_request=[s for s in stages if s.phase is Phase.ON_REQUEST],
            on_before_response=[s for s in stages if s.phase is Phase.ON_BEFORE_RESPONSE],
        )

    def stages(self, phase: Union[Phase, str]) -> Tuple[Stage, ...]:
        return self._stages[Phase(phase)]

    # ── Phase execution ───────────────────────────────────────────────────

    async def run(
        self, phase: Union[Phase, str], context: RequestContext
    ) -> Optional[TerminalResponse]:
        """
        Execute every stage of ``phase`` in order.

        Returns:
            The short-circuiting ``TerminalResponse``, or ``None`` when every
            stage completed without one.

        Raises:
            MiddlewareFailure: a stage raised.
            InvalidMiddlewareReturn: a stage returned an unsupported value.
        """
        phase = Phase(phase)
        snapshot = None
        if phase is Phase.ON_BEFORE_RESPONSE:
            snapshot = list(context.response_headers.raw)

        try:
            for stage in self._stages[phase]:
                result = await self._invoke(stage, context)
                if result is not None:
                    logger.debug(
                        "Stage '%s' short-circuited %s with status %d",
                        stage.name,
                        phase.value,
                        result.status_code,
                    )
                    return result
        except PipelineError:
            if snapshot is not None:
                context.response_headers.raw[:] = snapshot
            raise
        return None

    async def _invoke(self, stage: Stage, context: RequestContext) -> Optional[TerminalResponse]:
        try:
            result = stage.handler(context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise MiddlewareFailure(stage.name, stage.phase.value, exc) from exc

        if result is not None and not isinstance(result, TerminalResponse):
            raise InvalidMiddlewareReturn(stage.name, stage.phase.value, result)
        return result

    # ── Whole request ─────────────────────────────────────────────────────

    async def handle(self, context: RequestContext, handler: RouteHandler) -> TerminalResponse:
        """
        Run the full lifecycle for one request and return the final response.

        The handler receives the context after on_request completes without
        a short-circuit. Handler exceptions propagate unchanged. The context
        is closed on every exit path.
        """
        try:
            terminal = await self.run(Phase.ON_REQUEST, context)
            if terminal is not None:
                context.status_code = terminal.status_code
                return self._finalize(context, terminal)

            response = handler(context)
            if inspect.isawaitable(response):
                response = await response
            if not isinstance(response, TerminalResponse):
                raise TypeError(
                    f"Route handler returned {type(response).__name__}; "
                    "expected TerminalResponse"
                )

            merge_headers(context.response_headers, response.headers)
            context.status_code = response.status_code

            terminal = await self.run(Phase.ON_BEFORE_RESPONSE, context)
            if terminal is not None:
                return self._finalize(context, terminal)

            return TerminalResponse(
                status_code=response.status_code,
                headers=context.response_headers.items(),
                body=response.body,
            )
        finally:
            context.close()

    @staticmethod
    def _finalize(context: RequestContext, terminal: TerminalResponse) -> TerminalResponse:
        headers = MutableHeaders()
        merge_headers(headers, context.response_headers, exclude=ENTITY_HEADERS)
        merge_headers(headers, terminal.headers)
        return TerminalResponse(
            status_code=terminal.status_code,
            headers=headers.items(),
            body=terminal.body,
        )

    def __repr__(self) -> str:
        names = {
            phase.value: [stage.name for stage in stages]
            for phase, stages in self._stages.items()
        }
        return f"MiddlewarePipeline({names})"
