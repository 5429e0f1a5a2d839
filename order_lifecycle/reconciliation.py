"""
Refunds whose cancellation was never committed. Entries are LPUSHed to a Redis list and
stay there until an operator reconciles the order by hand.
"""
import json
import logging
import time

import redis.asyncio as redis

from order_lifecycle.gateways import RefundReceipt
from order_lifecycle.models import Order

logger = logging.getLogger(__name__)

RECONCILIATION_QUEUE_KEY = "queue:refund_reconciliation"


def _make_body(order: Order, receipt: RefundReceipt, error: Exception) -> dict:
    return {
        "order_id": order.id,
        "payment_intent_id": receipt.payment_intent_id,
        "refund_id": receipt.refund_id,
        "refund_status": receipt.status,
        "order_status": order.order_status.value,
        "payment_status": order.payment_status.value,
        "last_error": str(error),
        "failed_at": time.time(),
    }


class RedisReconciliationLog:
    def __init__(self, r: redis.Redis, key: str = RECONCILIATION_QUEUE_KEY):
        self.r = r
        self.key = key

    async def record(self, order: Order, receipt: RefundReceipt, error: Exception) -> None:
        body = _make_body(order, receipt, error)
        await self.r.lpush(self.key, json.dumps(body))
        logger.warning(
            "Flagged order_id=%s for manual reconciliation (refund_id=%s)",
            order.id,
            receipt.refund_id,
        )

    async def pending(self, limit: int = 100) -> list[dict]:
        """Newest first."""
        raw = await self.r.lrange(self.key, 0, limit - 1)
        return [json.loads(item) for item in raw]

    async def count(self) -> int:
        return await self.r.llen(self.key)
