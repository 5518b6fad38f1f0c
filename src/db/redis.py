from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from config.settings import settings

_redis_client: Redis | None = None


async def get_redis(url: str | None = None) -> Redis:
    """Shared client backing the claim locks.

    The first call pings the server so a misconfigured lock backend fails at
    startup instead of on the first claim. A failed ping leaves no client
    cached.
    """
    global _redis_client
    if _redis_client is None:
        client = Redis.from_url(url or settings.redis_url, decode_responses=True)
        try:
            await client.ping()
        except RedisError:
            await client.aclose()
            raise
        logger.info("[LOCK] Redis lock backend connected")
        _redis_client = client
    return _redis_client


async def redis_healthy(client: Redis | None) -> bool:
    """Ping for the health endpoint; False when not configured or unreachable."""
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning(f"[LOCK] Redis ping failed: {e}")
        return False


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
