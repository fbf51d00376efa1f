"""
Foyer — Post Service (Query-Cached Server Functions)
======================================================

What:  Read and write operations for posts, with reads served through the
       shared QueryCache.
How:   ``list_posts`` and ``get_post`` are registered as cached queries
       ("posts" and "post"). Concurrent requests for the same data share a
       single store call. Writes go to the store, then invalidate the
       affected query keys so the next read refetches.
Who:   Called by the posts route handlers.

Query keys:
    posts            → QueryKey("posts")
    post(<id>)       → QueryKey("post", (<id>,))
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from foyer.exceptions import NotFoundError
from foyer.query import QueryCache
from foyer.schemas.post import Post, PostCreate, PostUpdate
from foyer.services.cache import query_cache

logger = logging.getLogger(__name__)


class PostStore:
    """
    In-memory post storage standing in for a database.

    Every call yields to the event loop once, like real I/O would.
    """

    def __init__(self):
        self._posts: Dict[int, Post] = {}
        self._next_id = 1
        self.reads = 0

    async def all(self) -> List[Post]:
        await asyncio.sleep(0)
        self.reads += 1
        return list(self._posts.values())

    async def get(self, post_id: int) -> Optional[Post]:
        await asyncio.sleep(0)
        self.reads += 1
        return self._posts.get(post_id)

    async def add(self, title: str, body: str) -> Post:
        await asyncio.sleep(0)
        post = Post(
            id=self._next_id,
            title=title,
            body=body,
            created_at=datetime.now(timezone.utc),
        )
        self._posts[post.id] = post
        self._next_id += 1
        return post

    async def replace(self, post: Post) -> None:
        await asyncio.sleep(0)
        self._posts[post.id] = post


class PostService:
    """
    Responsibilities:
        - list_posts(): cached list of every post
        - get_post(): cached single post, NotFoundError when missing
        - create_post() / update_post(): write, then invalidate
    """

    def __init__(self, cache: QueryCache, store: PostStore):
        self.cache = cache
        self.store = store
        self.list_posts = cache.query("posts")(self._fetch_posts)
        self.get_post = cache.query("post")(self._fetch_post)

    async def _fetch_posts(self) -> List[Post]:
        posts = await self.store.all()
        logger.debug("Fetched %d posts from store", len(posts))
        return posts

    async def _fetch_post(self, post_id: int) -> Post:
        post = await self.store.get(post_id)
        if post is None:
            raise NotFoundError(resource="Post", resource_id=str(post_id))
        return post

    async def create_post(self, data: PostCreate) -> Post:
        post = await self.store.add(title=data.title, body=data.body)
        self.cache.invalidate(self.list_posts.key)
        # A lookup for this id may have been cached as not-found
        self.cache.invalidate(self.get_post.key_for(post.id))
        logger.info("Post %d created", post.id)
        return post

    async def update_post(self, post_id: int, data: PostUpdate) -> Post:
        current = await self.store.get(post_id)
        if current is None:
            raise NotFoundError(resource="Post", resource_id=str(post_id))

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        updated = current.model_copy(
            update={**changes, "updated_at": datetime.now(timezone.utc)}
        )
        await self.store.replace(updated)

        self.cache.invalidate([self.list_posts.key, self.get_post.key_for(post_id)])
        logger.info("Post %d updated", post_id)
        return updated


# Singleton instance
post_service = PostService(query_cache, PostStore())
