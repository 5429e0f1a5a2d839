"""
Per-order mutual exclusion. Lifecycle operations on the same order id run one at a time.
- LocalOrderLocks: asyncio.Lock per order id (single process, tests).
- RedisOrderLocks: redis lock "lock:order:<id>" shared by every API process.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

import redis.asyncio as redis
from redis.exceptions import LockError

from order_lifecycle.errors import OrderBusyError

logger = logging.getLogger(__name__)


class OrderLocks(Protocol):
    def hold(self, order_id: int): ...


class LocalOrderLocks:
    def __init__(self, wait_seconds: float | None = None):
        self.wait_seconds = wait_seconds
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError:
                raise OrderBusyError(order_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                del self._locks[order_id]


class RedisOrderLocks:
    def __init__(self, r: redis.Redis, timeout_seconds: int = 30, wait_seconds: float = 5.0):
        self.r = r
        self.timeout_seconds = timeout_seconds
        self.wait_seconds = wait_seconds

    @staticmethod
    def key(order_id: int) -> str:
        return f"lock:order:{order_id}"

    @asynccontextmanager
    async def hold(self, order_id: int) -> AsyncIterator[None]:
        lock = self.r.lock(
            self.key(order_id),
            timeout=self.timeout_seconds,
            blocking_timeout=self.wait_seconds,
        )
        if not await lock.acquire():
            raise OrderBusyError(order_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # TTL expired while held; the Postgres row lock still serialized the commit
                logger.warning("Lock %s expired before release (ttl=%ds)", self.key(order_id), self.timeout_seconds)
