"""
Foyer — Posts Route Handlers
==============================

What:  CRUD-lite endpoints for posts plus manual query invalidation.
How:   Reads go through PostService's cached queries; writes invalidate.
       Handlers receive the request's pipeline context through
       ``get_request_context`` and may write response headers on it.

Routes:
    GET  /api/posts               list (query "posts")
    GET  /api/posts/{id}          detail (query "post")
    POST /api/posts               create → 201 + Location
    PUT  /api/posts/{id}          update
    POST /api/queries/invalidate  invalidate by name or name + args
"""

import logging

from fastapi import APIRouter, Depends

from foyer.middleware.pipeline import get_request_context
from foyer.pipeline import RequestContext
from foyer.query import QueryKey
from foyer.schemas.post import (
    ErrorResponse,
    InvalidateRequest,
    InvalidateResponse,
    Post,
    PostCreate,
    PostListResponse,
    PostUpdate,
)
from foyer.services.cache import query_cache
from foyer.services.post_service import post_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Posts"])


@router.get("/posts", response_model=PostListResponse, summary="List posts")
async def list_posts() -> PostListResponse:
    posts = await post_service.list_posts()
    return PostListResponse(posts=posts, total_count=len(posts))


@router.get(
    "/posts/{post_id}",
    response_model=Post,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Get a post",
)
async def get_post(post_id: int) -> Post:
    return await post_service.get_post(post_id)


@router.post("/posts", status_code=201, response_model=Post, summary="Create a post")
async def create_post(
    data: PostCreate,
    context: RequestContext = Depends(get_request_context),
) -> Post:
    post = await post_service.create_post(data)
    context.response_headers["Location"] = f"/api/posts/{post.id}"
    return post


@router.put(
    "/posts/{post_id}",
    response_model=Post,
    responses={404: {"model": ErrorResponse}},
    summary="Update a post",
)
async def update_post(post_id: int, data: PostUpdate) -> Post:
    return await post_service.update_post(post_id, data)


@router.post(
    "/queries/invalidate",
    response_model=InvalidateResponse,
    summary="Invalidate cached queries",
)
async def invalidate_queries(data: InvalidateRequest) -> InvalidateResponse:
    if data.args is None:
        target = data.name
    else:
        target = QueryKey.of(data.name, *data.args)
    count = query_cache.invalidate(target)
    logger.info("Invalidated %d entries for %s", count, target)
    return InvalidateResponse(invalidated=count)
