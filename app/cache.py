import json
import logging

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

TAG_LIST_KEY = "tags:list"


class CacheManager:
    """
    Cache-aside manager backed by Redis.

    Only derived, rebuildable data goes through here (currently the tag
    list).  Article views are never cached because ``favoritesCount`` has
    to reflect the live favorites relation.

    Every public method tolerates Redis being down: reads return None and
    writes are skipped.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        """Return the cached value for *key*, or None on a miss / error."""
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        if data is None:
            return None
        return json.loads(data)

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete(self, key: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.delete(key)
        except Exception as exc:
            logger.debug("Cache DELETE error for key=%r: %s", key, exc)

    # ------------------------------------------------------------------
    # Domain-level helpers
    # ------------------------------------------------------------------

    async def invalidate_tags(self) -> None:
        """Drop the cached tag list after new tag rows were inserted."""
        await self.delete(TAG_LIST_KEY)


# Module-level singleton shared across all request handlers.
cache = CacheManager()
