"""
Foyer — Middleware Pipeline Unit Tests
========================================

What:  Tests for MiddlewarePipeline ordering, short-circuiting, header
       precedence and error propagation.
How:   Framework-free: contexts are built directly and requests are driven
       through ``MiddlewarePipeline.handle``.
"""

import asyncio

import pytest

from foyer.exceptions import ContextClosedError, InvalidMiddlewareReturn, MiddlewareFailure
from foyer.pipeline import (
    MiddlewarePipeline,
    Phase,
    Stage,
    TerminalResponse,
    create_middleware,
)


def ok_handler(context):
    return TerminalResponse.text("handled")


class TestStageOrder:
    """Stages run strictly in declaration order, one at a time."""

    @pytest.mark.asyncio
    async def test_stages_run_in_declared_order(self, make_context):
        calls = []

        def first(context):
            calls.append("first")

        async def second(context):
            await asyncio.sleep(0)
            calls.append("second")

        def third(context):
            calls.append("third")

        def after(context):
            calls.append("after")

        def handler(context):
            calls.append("handler")
            return TerminalResponse()

        pipeline = MiddlewarePipeline(on_request=[first, second, third], on_before_response=[after])
        await pipeline.handle(make_context(), handler)

        assert calls == ["first", "second", "third", "handler", "after"]

    @pytest.mark.asyncio
    async def test_async_stage_completes_before_next_starts(self, make_context):
        active = []
        overlaps = []

        async def slow(context):
            active.append("slow")
            await asyncio.sleep(0.01)
            active.remove("slow")

        def check(context):
            overlaps.append(list(active))

        pipeline = MiddlewarePipeline(on_request=[slow, check])
        await pipeline.run(Phase.ON_REQUEST, make_context())

        assert overlaps == [[]]

    @pytest.mark.asyncio
    async def test_run_returns_none_without_short_circuit(self, make_context):
        pipeline = MiddlewarePipeline(on_request=[lambda context: None])
        assert await pipeline.run("on_request", make_context()) is None


class TestShortCircuit:
    """A terminal response ends the pipeline early."""

    @pytest.mark.asyncio
    async def test_on_request_terminal_skips_everything_after(self, make_context):
        counts = {"late_request": 0, "handler": 0, "before_response": 0}

        def deny(context):
            return TerminalResponse.json({"error": "forbidden"}, status_code=403)

        def late_request(context):
            counts["late_request"] += 1

        def before_response(context):
            counts["before_response"] += 1

        def handler(context):
            counts["handler"] += 1
            return TerminalResponse()

        pipeline = MiddlewarePipeline(
            on_request=[deny, late_request],
            on_before_response=[before_response],
        )
        response = await pipeline.handle(make_context(), handler)

        assert response.status_code == 403
        assert response.body_bytes == b'{"error":"forbidden"}'
        assert counts == {"late_request": 0, "handler": 0, "before_response": 0}

    @pytest.mark.asyncio
    async def test_terminal_keeps_accumulated_headers_but_wins_on_conflict(self, make_context):
        def tag(context):
            context.response_headers["X-Request-ID"] = "abc"
            context.response_headers["X-Source"] = "stage"

        def deny(context):
            return TerminalResponse(status_code=401, headers={"X-Source": "terminal"})

        pipeline = MiddlewarePipeline(on_request=[tag, deny])
        response = await pipeline.handle(make_context(), ok_handler)

        assert response.status_code == 401
        assert response.headers["x-request-id"] == "abc"
        assert response.headers.getlist("x-source") == ["terminal"]

    @pytest.mark.asyncio
    async def test_before_response_terminal_replaces_handler_response(self, make_context):
        calls = []

        def replace(context):
            return TerminalResponse.text("maintenance", status_code=503)

        def never(context):
            calls.append("never")

        pipeline = MiddlewarePipeline(on_before_response=[replace, never])
        response = await pipeline.handle(make_context(), ok_handler)

        assert response.status_code == 503
        assert response.body == "maintenance"
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert calls == []

    @pytest.mark.asyncio
    async def test_terminal_does_not_inherit_handler_entity_headers(self, make_context):
        def replace(context):
            return TerminalResponse(status_code=204)

        def handler(context):
            return TerminalResponse.json({"ok": True})

        pipeline = MiddlewarePipeline(on_before_response=[replace])
        response = await pipeline.handle(make_context(), handler)

        assert "content-type" not in response.headers


class TestHeaderPrecedence:
    """on_request < handler < on_before_response."""

    @pytest.mark.asyncio
    async def test_before_response_overrides_handler_header(self, make_context):
        def handler(context):
            return TerminalResponse(headers={"Cache-Control": "max-age=60"}, body=b"x")

        def no_cache(context):
            context.response_headers["Cache-Control"] = "no-store"

        pipeline = MiddlewarePipeline(on_before_response=[no_cache])
        response = await pipeline.handle(make_context(), handler)

        assert response.headers.getlist("cache-control") == ["no-store"]
        assert response.body == b"x"

    @pytest.mark.asyncio
    async def test_handler_overrides_on_request_header(self, make_context):
        seen = {}

        def early(context):
            context.response_headers["X-Mode"] = "early"

        def handler(context):
            seen["mode"] = context.response_headers["x-mode"]
            return TerminalResponse(headers={"X-Mode": "handler"})

        pipeline = MiddlewarePipeline(on_request=[early])
        response = await pipeline.handle(make_context(), handler)

        assert seen["mode"] == "early"
        assert response.headers["x-mode"] == "handler"

    @pytest.mark.asyncio
    async def test_locals_scenario_final_header(self, make_context):
        observed = {}

        def stage_a(context):
            context.locals["x"] = 1

        def stage_b(context):
            observed["x"] = context.locals["x"]
            context.response_headers["h1"] = "1"

        def stage_c(context):
            context.response_headers["h1"] = "2"

        pipeline = MiddlewarePipeline.from_stages(
            [
                Stage("A", Phase.ON_REQUEST, stage_a),
                Stage("B", Phase.ON_REQUEST, stage_b),
                Stage("C", Phase.ON_BEFORE_RESPONSE, stage_c),
            ]
        )
        response = await pipeline.handle(make_context(), ok_handler)

        assert observed["x"] == 1
        assert response.headers["h1"] == "2"

    @pytest.mark.asyncio
    async def test_multi_value_headers_survive_merge(self, make_context):
        def cookies(context):
            context.response_headers.append("Set-Cookie", "a=1")
            context.response_headers.append("Set-Cookie", "b=2")

        pipeline = MiddlewarePipeline(on_before_response=[cookies])
        response = await pipeline.handle(make_context(), ok_handler)

        assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]


class TestRequestIsolation:
    """One pipeline serving overlapping requests keeps their state apart."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_do_not_share_locals(self, make_context):
        async def remember_user(context):
            context.locals["user"] = context.request.headers["x-user"]
            await asyncio.sleep(0)

        async def echo_user(context):
            await asyncio.sleep(0)
            context.response_headers["x-user"] = context.locals["user"]

        pipeline = MiddlewarePipeline(
            on_request=[remember_user],
            on_before_response=[echo_user],
        )
        users = [f"user-{n}" for n in range(5)]
        contexts = [make_context(headers={"X-User": user}) for user in users]

        responses = await asyncio.gather(
            *(pipeline.handle(context, ok_handler) for context in contexts)
        )

        assert [response.headers["x-user"] for response in responses] == users
        assert all(context.closed for context in contexts)


class TestErrors:
    """Stage failures propagate with stage name and phase attached."""

    @pytest.mark.asyncio
    async def test_raising_stage_becomes_middleware_failure(self, make_context):
        def explode(context):
            raise KeyError("missing")

        pipeline = MiddlewarePipeline(on_request=[Stage("auth", Phase.ON_REQUEST, explode)])

        with pytest.raises(MiddlewareFailure) as excinfo:
            await pipeline.handle(make_context(), ok_handler)

        assert excinfo.value.stage == "auth"
        assert excinfo.value.phase == "on_request"
        assert isinstance(excinfo.value.cause, KeyError)
        assert excinfo.value.__cause__ is excinfo.value.cause

    @pytest.mark.asyncio
    async def test_async_stage_failure_is_wrapped(self, make_context):
        async def explode(context):
            await asyncio.sleep(0)
            raise RuntimeError("upstream down")

        pipeline = MiddlewarePipeline(on_before_response=[explode])

        with pytest.raises(MiddlewareFailure, match="upstream down") as excinfo:
            await pipeline.handle(make_context(), ok_handler)
        assert excinfo.value.phase == "on_before_response"
        assert excinfo.value.stage == "explode"

    @pytest.mark.asyncio
    async def test_non_response_return_is_invalid(self, make_context):
        def returns_dict(context):
            return {"status": 403}

        pipeline = MiddlewarePipeline(on_request=[returns_dict])

        with pytest.raises(InvalidMiddlewareReturn) as excinfo:
            await pipeline.run(Phase.ON_REQUEST, make_context())
        assert excinfo.value.stage == "returns_dict"
        assert excinfo.value.value == {"status": 403}

    @pytest.mark.asyncio
    async def test_failed_before_response_phase_discards_its_headers(self, make_context):
        def first(context):
            context.response_headers["X-First"] = "1"
            context.response_headers["X-Existing"] = "changed"

        def explode(context):
            raise ValueError("nope")

        context = make_context()
        context.response_headers["X-Existing"] = "original"
        pipeline = MiddlewarePipeline(on_before_response=[first, explode])

        with pytest.raises(MiddlewareFailure):
            await pipeline.run(Phase.ON_BEFORE_RESPONSE, context)

        assert "x-first" not in context.response_headers
        assert context.response_headers["x-existing"] == "original"

    @pytest.mark.asyncio
    async def test_handler_error_propagates_unchanged_and_closes_context(self, make_context):
        def handler(context):
            raise LookupError("no route")

        context = make_context()
        pipeline = MiddlewarePipeline()

        with pytest.raises(LookupError):
            await pipeline.handle(context, handler)
        assert context.closed

    @pytest.mark.asyncio
    async def test_context_is_closed_after_handle(self, make_context):
        context = make_context()
        await MiddlewarePipeline().handle(context, ok_handler)

        with pytest.raises(ContextClosedError):
            context.locals["late"] = True
        with pytest.raises(ContextClosedError):
            context.response_headers["X-Late"] = "1"


class TestConstruction:
    """Stage records, create_middleware and from_stages."""

    def test_create_middleware_accepts_single_callable_and_sequences(self):
        def check_auth(context):
            return None

        def load_user(context):
            return None

        def add_headers(context):
            return None

        stages = create_middleware(
            on_request=[check_auth, load_user],
            on_before_response=add_headers,
            name="auth",
        )

        assert [(s.name, s.phase) for s in stages] == [
            ("auth.check_auth", Phase.ON_REQUEST),
            ("auth.load_user", Phase.ON_REQUEST),
            ("auth.add_headers", Phase.ON_BEFORE_RESPONSE),
        ]

    def test_from_stages_partitions_preserving_order(self):
        stages = create_middleware(on_request=[print, repr], on_before_response=[len])
        pipeline = MiddlewarePipeline.from_stages(stages)

        assert [s.name for s in pipeline.stages(Phase.ON_REQUEST)] == ["print", "repr"]
        assert [s.name for s in pipeline.stages("on_before_response")] == ["len"]

    def test_stage_in_wrong_phase_list_is_rejected(self):
        stage = Stage("late", Phase.ON_BEFORE_RESPONSE, lambda context: None)
        with pytest.raises(ValueError, match="on_before_response"):
            MiddlewarePipeline(on_request=[stage])

    def test_stage_requires_callable_handler(self):
        with pytest.raises(TypeError):
            Stage("broken", Phase.ON_REQUEST, "not callable")

    def test_stage_accepts_phase_string(self):
        stage = Stage("s", "on_request", lambda context: None)
        assert stage.phase is Phase.ON_REQUEST
