from typing import Optional
import redis.asyncio as redis
from kmerch.config.settings import config_settings

REDIS_LOCK_TIMEOUT = 5   # seconds

_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    """Shared client, or None when no REDIS_URL is configured (cache disabled)."""
    global _redis_client
    if not config_settings.REDIS_URL:
        return None
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(config_settings.REDIS_URL, decode_responses=False)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
