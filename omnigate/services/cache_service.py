from typing import Optional

import redis.asyncio as aioredis

from omnigate.logging_config import get_logger

logger = get_logger("cache_service")


def create_redis(url: str) -> aioredis.Redis:
    return aioredis.from_url(url, decode_responses=True)


class CacheService:
    """Key-value cache helpers. Every call fails open when Redis is unavailable."""

    def __init__(self, client: Optional[aioredis.Redis]):
        self.client = client

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """Fixed-window counter. True when the request is within the limit."""
        if self.client is None or limit <= 0:
            return True
        redis_key = f"ratelimit:{key}"
        try:
            count = await self.client.incr(redis_key)
            if count == 1:
                await self.client.expire(redis_key, window_seconds)
        except Exception as e:
            logger.warning(f"Rate limit check skipped for {key}: {e}")
            return True
        return count <= limit

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
