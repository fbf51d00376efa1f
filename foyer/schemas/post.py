"""
Foyer — Pydantic Request/Response Schemas
===========================================

What:  Pydantic models defining the API contract of the demo service.
How:   FastAPI uses these models to validate request bodies, serialize
       responses, and generate the OpenAPI document.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Domain / Response Models
# ══════════════════════════════════════════════════════════════════════════


class Post(BaseModel):
    """A post as served by the query-cached read endpoints."""

    id: int = Field(description="Post identifier")
    title: str = Field(description="Post title")
    body: str = Field(description="Post body text")
    created_at: datetime = Field(description="Creation timestamp (UTC)")
    updated_at: Optional[datetime] = Field(default=None, description="Last update (UTC)")


class PostListResponse(BaseModel):
    posts: List[Post] = Field(description="Posts in creation order")
    total_count: int = Field(description="Number of posts")


class InvalidateResponse(BaseModel):
    invalidated: int = Field(description="Number of cache entries invalidated")


class QueryCacheStats(BaseModel):
    """Counters reported by ``QueryCache.stats()``."""

    entries: int
    pending: int
    resolved: int
    rejected: int
    executions: int
    dedup_hits: int
    stale_writes_discarded: int
    evictions: int


class HealthResponse(BaseModel):
    """
    What:  Service health plus pipeline and cache introspection.
    Who:   Returned by GET /health.
    """

    status: str = Field(description="healthy")
    version: str = Field(description="Application version")
    stages: dict = Field(description="Stage names per pipeline phase")
    query_cache: QueryCacheStats
    uptime_seconds: float = Field(description="Seconds since the service started")


class ErrorResponse(BaseModel):
    """Error body returned by every exception handler."""

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Any] = Field(default=None, description="Additional context")
    request_id: Optional[str] = Field(default=None, description="Correlation id")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(default="", max_length=10_000)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped


class PostUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    body: Optional[str] = Field(default=None, max_length=10_000)


class InvalidateRequest(BaseModel):
    """
    Which query entries to invalidate.

    ``name`` alone targets every argument tuple of that query; with
    ``args`` it targets exactly one entry.
    """

    name: str = Field(min_length=1, description="Query name, e.g. 'posts' or 'post'")
    args: Optional[List[Any]] = Field(default=None, description="Positional query arguments")
