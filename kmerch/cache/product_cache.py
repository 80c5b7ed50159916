import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional
from redis.exceptions import RedisError
from kmerch.cache._cache import REDIS_LOCK_TIMEOUT, get_redis
from kmerch.cache.utils import build_key, deserialize, release_lock, serialize
from kmerch.common.logging_setup import get_logger
from kmerch.config.settings import config_settings

logger = get_logger("kmerch.cache")

KEY_PREFIX = "kmerch"


def product_key(product_id: int) -> str:
    return build_key(KEY_PREFIX, "product", str(product_id))


async def _read(redis_client, key: str) -> Optional[Dict[str, Any]]:
    raw = await redis_client.get(key)
    if raw is None:
        return None
    try:
        return deserialize(raw)
    except ValueError:
        await redis_client.delete(key)
        return None


async def get_product_cached(product_id: int,
                             loader: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
    """Read-through cache for product details with lock based dogpile protection.

    Redis being unavailable never fails the request, the loader result is returned instead.
    """
    redis_client = get_redis()
    if redis_client is None:
        return await loader()

    key = product_key(product_id)
    lock_key = key + ":lock"
    try:
        cached = await _read(redis_client, key)
        if cached is not None:
            return cached

        token = uuid.uuid4().hex
        locked = await redis_client.set(lock_key, token, nx=True, ex=REDIS_LOCK_TIMEOUT)
        if not locked:
            # someone else is loading, wait briefly for them
            waited, interval = 0.0, 0.05
            while waited < REDIS_LOCK_TIMEOUT + 1:
                await asyncio.sleep(interval)
                waited += interval
                cached = await _read(redis_client, key)
                if cached is not None:
                    return cached
    except RedisError as exc:
        logger.warning("cache.product.read_failed", extra={"product_id": product_id, "error": str(exc)})
        return await loader()

    try:
        details = await loader()
        await set_product_cache_if_newer(redis_client, product_id, details,
                                         int(details.get("version", 0)), config_settings.PRODUCT_CACHE_TTL)
        return details
    finally:
        if locked:
            await release_lock(redis_client, lock_key, token)


async def set_product_cache_if_newer(redis_client, product_id: int, payload: dict, new_ts: int, ttl: int) -> bool:
    """Atomically set product cache only if new_ts >= the cached version."""
    value_key = product_key(product_id)
    ver_key = value_key + ":ver"
    try:
        res = await redis_client.eval(_SET_IF_NEWER_LUA, 2, value_key, ver_key, serialize(payload), str(new_ts), str(ttl))
        return bool(res)
    except RedisError as exc:
        logger.warning("cache.product.write_failed", extra={"product_id": product_id, "error": str(exc)})
        return False


async def invalidate_product(product_id: int) -> None:
    redis_client = get_redis()
    if redis_client is None:
        return
    key = product_key(product_id)
    try:
        await redis_client.delete(key, key + ":ver")
    except RedisError as exc:
        logger.warning("cache.product.invalidate_failed", extra={"product_id": product_id, "error": str(exc)})


_SET_IF_NEWER_LUA = """
local cur = redis.call("GET", KEYS[2])
if not cur then cur = "0" end
local newv = tonumber(ARGV[2])
local curv = tonumber(cur)
if newv >= curv then
  redis.call("SET", KEYS[1], ARGV[1], "EX", ARGV[3])
  redis.call("SET", KEYS[2], ARGV[2], "EX", ARGV[3])
  return 1
else
  return 0
end
"""
