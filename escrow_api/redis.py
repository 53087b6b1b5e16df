import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from escrow_api.config import settings

logger = logging.getLogger(__name__)

redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url)


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()


async def redis_available(client: aioredis.Redis) -> bool:
    """Ping Redis for the health endpoint. Nonce and rate-limit checks need it."""
    try:
        return bool(await client.ping())
    except RedisError:
        logger.warning("Redis ping failed", exc_info=True)
        return False
