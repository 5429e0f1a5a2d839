"""
FastAPI dependencies: one lifecycle manager per request, wired to a fresh unit of work.
The unit of work takes its pooled connection on first use, which is after the per-order lock is held.
"""
from typing import AsyncIterator

from order_lifecycle.config import settings
from order_lifecycle.db import PostgresOrderGateway, get_pool
from order_lifecycle.lifecycle import OrderLifecycleManager
from order_lifecycle.payments import get_payment_gateway
from order_lifecycle.reconciliation import RedisReconciliationLog
from order_lifecycle.redis_client import get_order_locks, get_redis


async def get_reconciliation_log() -> RedisReconciliationLog:
    return RedisReconciliationLog(await get_redis())


async def get_lifecycle_manager() -> AsyncIterator[OrderLifecycleManager]:
    pool = await get_pool()
    async with PostgresOrderGateway(pool) as orders:
        yield OrderLifecycleManager(
            orders,
            get_payment_gateway(),
            locks=await get_order_locks(),
            reconciliation=await get_reconciliation_log(),
            strict=settings.strict_transitions,
        )
