"""Redis cache infrastructure with graceful degradation."""

from typing import Any

import orjson
import redis.asyncio as aioredis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError
import structlog

from cart_recovery_service.config import get_settings

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None


async def connect_redis(url: str) -> aioredis.Redis | None:
    """Open a Redis client, or return None if the server is unreachable."""
    try:
        client = aioredis.from_url(
            url,
            decode_responses=False,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
        )
        await client.ping()
    except Exception as e:
        logger.warning("Redis unavailable, caching disabled", error=str(e))
        return None
    logger.info("Redis connection established")
    return client


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = await connect_redis(get_settings().redis_url)
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class CacheService:
    """Async Redis cache with orjson serialization. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client
        self._locks: dict[str, Lock] = {}

    async def get(self, key: str) -> Any | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
            if data:
                return orjson.loads(data)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        if not self.client:
            return
        try:
            await self.client.set(key, orjson.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        if not self.client:
            return
        try:
            await self.client.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed", key=key, error=str(e))

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the number removed."""
        if not self.client:
            return 0
        removed = 0
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
            if keys:
                removed = await self.client.delete(*keys)
        except Exception as e:
            logger.warning("Cache prefix delete failed", prefix=prefix, error=str(e))
        return removed

    async def acquire_lock(self, key: str, ttl_seconds: int) -> bool:
        """
        Take a short-lived advisory lock owned by this service instance.

        Without Redis there is nothing to coordinate against, so the lock is
        always granted.
        """
        if not self.client:
            return True
        try:
            lock = self.client.lock(key, timeout=ttl_seconds, blocking=False)
            if not await lock.acquire():
                return False
        except Exception as e:
            logger.warning("Lock acquire failed", key=key, error=str(e))
            return True
        self._locks[key] = lock
        return True

    async def release_lock(self, key: str) -> None:
        """Release a lock taken by acquire_lock, only while this instance still owns it."""
        lock = self._locks.pop(key, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockError as e:
            logger.warning("Lock expired or taken over before release", key=key, error=str(e))
        except Exception as e:
            logger.warning("Lock release failed", key=key, error=str(e))

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return await self.client.ping()
        except Exception:
            return False
