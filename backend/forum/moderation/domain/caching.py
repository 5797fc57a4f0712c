"""Redis-backed cache for moderator pending-report badge counts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from redis.asyncio import Redis

from forum.infra.redis import RedisProxy, redis_client
from forum.obs import metrics
from forum.settings import settings

CountBuilder = Callable[[], Awaitable[int]]

logger = logging.getLogger(__name__)


class PendingCountCache:
    """Caches per-moderator pending counts with singleflight rebuilds.

    Keys embed a generation number; bumping the generation retires every
    cached count at once without scanning keys.
    """

    def __init__(
        self,
        redis: Redis | RedisProxy | None = None,
        *,
        ttl_seconds: int | None = None,
        namespace: str | None = None,
    ) -> None:
        self.redis = redis or redis_client
        self.ttl_seconds = settings.moderation_pending_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.namespace = namespace or settings.moderation_cache_namespace
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def _gen_key(self) -> str:
        return f"{self.namespace}gen"

    async def _key(self, user_id: str) -> str:
        generation = await self.redis.get(self._gen_key())
        return f"{self.namespace}{int(generation or 0)}:{user_id}"

    def _lock(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    async def get(self, user_id: str) -> int | None:
        return await self._read(await self._key(user_id))

    async def _read(self, key: str) -> int | None:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    async def set(self, user_id: str, count: int) -> None:
        await self.redis.set(await self._key(user_id), int(count), ex=self.ttl_seconds)

    async def get_or_build(self, user_id: str, builder: CountBuilder) -> int:
        if not self.enabled:
            return await builder()
        # A count built before an invalidation must land under the old generation.
        key = await self._key(user_id)
        cached = await self._read(key)
        if cached is not None:
            metrics.PENDING_COUNT_CACHE.labels(result="hit").inc()
            return cached
        lock = self._lock(user_id)
        try:
            async with lock:
                cached = await self._read(key)
                if cached is not None:
                    metrics.PENDING_COUNT_CACHE.labels(result="hit").inc()
                    return cached
                metrics.PENDING_COUNT_CACHE.labels(result="miss").inc()
                value = await builder()
                await self.redis.set(key, int(value), ex=self.ttl_seconds)
                return value
        finally:
            if not lock.locked() and self._locks.get(user_id) is lock:
                del self._locks[user_id]

    async def invalidate(self) -> None:
        if not self.enabled:
            return
        await self.redis.incr(self._gen_key())
        logger.debug("pending count cache invalidated", extra={"namespace": self.namespace})
