"""
Foyer — API Integration Tests
===============================

What:  End-to-end tests through FastAPI with the PipelineMiddleware mounted.
How:   httpx AsyncClient over ASGITransport (no server). Collaborators are
       replaced with ``unittest.mock`` where a test needs a failure.
"""

from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import Depends, Header
from httpx import ASGITransport, AsyncClient

from foyer.main import create_app
from foyer.middleware.pipeline import get_request_context
from foyer.middleware.rate_limit import RateLimiter
from foyer.middleware.request_id import assign_request_id
from foyer.pipeline import MiddlewarePipeline, Phase, RequestContext, Stage, TerminalResponse
from foyer.services.post_service import post_service


# ══════════════════════════════════════════════════════════════════════════
# Default pipeline
# ══════════════════════════════════════════════════════════════════════════

class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_stages_and_cache(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["stages"] == {
            "on_request": ["request_id", "rate_limit", "access_timer"],
            "on_before_response": ["access_log"],
        }
        assert data["query_cache"]["entries"] == 0

    @pytest.mark.asyncio
    async def test_request_id_echoed_and_timed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "trace-1"})

        assert response.headers["x-request-id"] == "trace-1"
        assert response.headers["x-response-time"].endswith("ms")

    @pytest.mark.asyncio
    async def test_request_id_generated_when_missing(self, test_client):
        response = await test_client.get("/health")
        assert len(response.headers["x-request-id"]) == 8


class TestPosts:
    @pytest.mark.asyncio
    async def test_create_returns_201_with_location(self, test_client):
        response = await test_client.post("/api/posts", json={"title": "  Hello  ", "body": "x"})

        assert response.status_code == 201
        post = response.json()
        assert post["title"] == "Hello"
        assert response.headers["location"] == f"/api/posts/{post['id']}"
        assert "x-request-id" in response.headers

    @pytest.mark.asyncio
    async def test_blank_title_rejected(self, test_client):
        response = await test_client.post("/api/posts", json={"title": "   "})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_created_post(self, test_client):
        created = (await test_client.post("/api/posts", json={"title": "Read me"})).json()

        response = await test_client.get(f"/api/posts/{created['id']}")

        assert response.status_code == 200
        assert response.json()["title"] == "Read me"

    @pytest.mark.asyncio
    async def test_missing_post_is_404(self, test_client):
        response = await test_client.get("/api/posts/999999", headers={"X-Request-ID": "r-404"})

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["request_id"] == "r-404"

    @pytest.mark.asyncio
    async def test_update_invalidates_cached_post(self, test_client):
        created = (await test_client.post("/api/posts", json={"title": "Draft"})).json()
        path = f"/api/posts/{created['id']}"
        assert (await test_client.get(path)).json()["title"] == "Draft"

        response = await test_client.put(path, json={"title": "Final"})
        assert response.status_code == 200
        assert response.json()["updated_at"] is not None

        assert (await test_client.get(path)).json()["title"] == "Final"

    @pytest.mark.asyncio
    async def test_update_missing_post_is_404(self, test_client):
        response = await test_client.put("/api/posts/999999", json={"title": "x"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_is_served_from_cache(self, test_client):
        await test_client.post("/api/posts", json={"title": "Listed"})
        reads_before = post_service.store.reads

        first = await test_client.get("/api/posts")
        second = await test_client.get("/api/posts")

        assert first.json() == second.json()
        assert first.json()["total_count"] == len(first.json()["posts"])
        assert post_service.store.reads - reads_before == 1

    @pytest.mark.asyncio
    async def test_create_refreshes_list(self, test_client):
        before = (await test_client.get("/api/posts")).json()["total_count"]
        await test_client.post("/api/posts", json={"title": "Another"})
        after = (await test_client.get("/api/posts")).json()["total_count"]
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_invalidate_endpoint(self, test_client):
        await test_client.get("/api/posts")
        reads_before = post_service.store.reads

        response = await test_client.post("/api/queries/invalidate", json={"name": "posts"})
        assert response.json() == {"invalidated": 1}

        await test_client.get("/api/posts")
        assert post_service.store.reads - reads_before == 1

    @pytest.mark.asyncio
    async def test_invalidate_with_args_targets_one_entry(self, test_client):
        created = (await test_client.post("/api/posts", json={"title": "One"})).json()
        await test_client.get(f"/api/posts/{created['id']}")
        await test_client.get("/api/posts/999999")

        response = await test_client.post(
            "/api/queries/invalidate", json={"name": "post", "args": [created["id"]]}
        )
        assert response.json() == {"invalidated": 1}

    @pytest.mark.asyncio
    async def test_store_failure_is_502(self, test_client):
        with patch.object(
            post_service.store, "all", AsyncMock(side_effect=ConnectionError("db down"))
        ):
            response = await test_client.get("/api/posts")

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "query_failed"
        assert body["details"] == {"query": "posts"}


# ══════════════════════════════════════════════════════════════════════════
# Custom pipelines
# ══════════════════════════════════════════════════════════════════════════

class TestCustomPipelines:
    @pytest.mark.asyncio
    async def test_stage_failure_returns_500_with_request_id(self, make_client):
        def explode(context):
            raise RuntimeError("stage bug")

        client = make_client(
            MiddlewarePipeline(
                on_request=[
                    Stage("request_id", Phase.ON_REQUEST, assign_request_id),
                    Stage("explode", Phase.ON_REQUEST, explode),
                ]
            )
        )

        response = await client.get("/api/posts", headers={"X-Request-ID": "boom-1"})

        assert response.status_code == 500
        assert response.json()["error"] == "internal_server_error"
        assert response.json()["request_id"] == "boom-1"
        assert response.headers["x-request-id"] == "boom-1"

    @pytest.mark.asyncio
    async def test_on_request_short_circuit_skips_handler(self, make_client):
        def deny(context):
            if "authorization" not in context.request.headers:
                return TerminalResponse.json({"error": "forbidden"}, status_code=403)
            return None

        client = make_client(MiddlewarePipeline(on_request=[assign_request_id, deny]))

        with patch.object(post_service, "list_posts", AsyncMock(return_value=[])) as mocked:
            response = await client.get("/api/posts")
            mocked.assert_not_awaited()

            allowed = await client.get("/api/posts", headers={"Authorization": "Bearer t"})
            mocked.assert_awaited_once()

        assert response.status_code == 403
        assert response.json() == {"error": "forbidden"}
        assert "x-request-id" in response.headers
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_before_response_sees_status_and_overrides_headers(self, make_client):
        seen = {}

        def rewrite_location(context):
            seen["status"] = context.status_code
            seen["location"] = context.response_headers.get("location")
            context.response_headers["Location"] = "/elsewhere"

        client = make_client(MiddlewarePipeline(on_before_response=[rewrite_location]))

        response = await client.post("/api/posts", json={"title": "Moved"})

        assert response.status_code == 201
        assert seen["status"] == 201
        assert seen["location"].startswith("/api/posts/")
        assert response.headers.get_list("location") == ["/elsewhere"]

    @pytest.mark.asyncio
    async def test_before_response_short_circuit_replaces_response(self, make_client):
        def maintenance(context):
            return TerminalResponse.text("down for maintenance", status_code=503)

        client = make_client(MiddlewarePipeline(on_before_response=[maintenance]))

        response = await client.get("/api/posts")

        assert response.status_code == 503
        assert response.text == "down for maintenance"
        assert response.headers["content-type"] == "text/plain; charset=utf-8"

    @pytest.mark.asyncio
    async def test_rate_limited_request_keeps_request_id(self, make_client):
        client = make_client(
            MiddlewarePipeline(
                on_request=[
                    Stage("request_id", Phase.ON_REQUEST, assign_request_id),
                    Stage("rate_limit", Phase.ON_REQUEST, RateLimiter(1, 60)),
                ]
            )
        )

        assert (await client.get("/api/posts")).status_code == 200
        response = await client.get("/api/posts", headers={"X-Request-ID": "slow-down"})

        assert response.status_code == 429
        assert response.headers["x-request-id"] == "slow-down"
        assert "retry-after" in response.headers
        assert response.json()["request_id"] == "slow-down"

    @pytest.mark.asyncio
    async def test_stage_rewrites_inbound_headers_and_shares_locals(self):
        def tag_user(context):
            context.request.headers["X-User"] = "alice"
            context.locals["role"] = "editor"

        app = create_app(MiddlewarePipeline(on_request=[tag_user]))

        @app.get("/whoami")
        async def whoami(
            x_user: Optional[str] = Header(default=None),
            context: RequestContext = Depends(get_request_context),
        ):
            return {"user": x_user, "role": context.locals["role"]}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/whoami")

        assert response.json() == {"user": "alice", "role": "editor"}
