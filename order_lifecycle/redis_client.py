import redis.asyncio as redis
from order_lifecycle.config import settings
from order_lifecycle.locks import LocalOrderLocks, OrderLocks, RedisOrderLocks

_redis: redis.Redis | None = None
_local_locks: LocalOrderLocks | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def get_order_locks() -> OrderLocks:
    """
    Lock provider for the configured backend.
    LOCK_BACKEND=local is only safe when a single API process serves all requests.
    """
    global _local_locks
    if settings.lock_backend == "local":
        if _local_locks is None:
            _local_locks = LocalOrderLocks(wait_seconds=settings.order_lock_wait_sec)
        return _local_locks
    r = await get_redis()
    return RedisOrderLocks(
        r,
        timeout_seconds=settings.order_lock_timeout_sec,
        wait_seconds=settings.order_lock_wait_sec,
    )
