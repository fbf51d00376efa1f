"""
Foyer — Test Configuration (conftest.py)
==========================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixtures:
    make_context:  builds a fresh RequestContext for pipeline tests
    cache:         an isolated QueryCache (no eviction)
    test_client:   HTTPX AsyncClient over the default app
    make_client:   HTTPX AsyncClient over an app with a custom pipeline
"""

import os

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Must run before anything imports foyer.config
os.environ["FOYER_LOG_LEVEL"] = "WARNING"
os.environ["FOYER_RATE_LIMIT_REQUESTS"] = "1000"
os.environ["FOYER_RATE_LIMIT_WINDOW"] = "60"


# ══════════════════════════════════════════════════════════════════════════
# Pipeline Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_context():
    """
    Factory for RequestContext instances.

    Usage:
        def test_x(make_context):
            context = make_context(headers={"X-Request-ID": "abc"})
    """
    from foyer.pipeline import RequestContext, RequestInfo

    def factory(method="GET", url="http://test/api/posts", headers=None, client="127.0.0.1"):
        return RequestContext(RequestInfo.build(method, url, headers=headers, client=client))

    return factory


# ══════════════════════════════════════════════════════════════════════════
# Query Cache Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def cache():
    """A QueryCache that never evicts, so tests control entry lifetime."""
    from foyer.query import QueryCache

    return QueryCache(eviction_delay=None)


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client():
    """
    HTTPX AsyncClient talking to a freshly built app with the default pipeline.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from foyer.main import create_app
    from foyer.services.cache import query_cache

    query_cache.clear()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    query_cache.clear()


@pytest_asyncio.fixture
async def make_client():
    """Factory building a client for an app mounted with a custom pipeline."""
    from foyer.main import create_app
    from foyer.services.cache import query_cache

    clients = []
    query_cache.clear()

    def factory(pipeline):
        app = create_app(pipeline)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
    query_cache.clear()
