"""
Async Postgres: orders (header + lifecycle state) and order_details (line items).
Each request gets one PostgresOrderGateway: a pooled connection with an open transaction,
both taken on first use.
The order row is read FOR UPDATE, so it stays locked until commit or rollback.
"""
import asyncio
import logging

import asyncpg

from order_lifecycle.config import settings
from order_lifecycle.errors import PersistenceError
from order_lifecycle.models import Order, OrderDetail
from order_lifecycle.order_state import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None

# Server errors, client-side errors such as "connection is closed", dropped sockets, command_timeout
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id SERIAL PRIMARY KEY,
                user_id VARCHAR(255),
                order_status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                payment_status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                payment_intent_id VARCHAR(255),
                carrier VARCHAR(100),
                tracking_number VARCHAR(100),
                shipping_date TIMESTAMPTZ,
                order_total NUMERIC(12, 2) NOT NULL DEFAULT 0,
                order_date TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_details (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id),
                product_id INT NOT NULL,
                count INT NOT NULL,
                price NUMERIC(12, 2) NOT NULL
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_details_order_id
            ON order_details(order_id);
        """)


def _row_to_order(row: asyncpg.Record) -> Order:
    return Order(
        id=row["id"],
        order_status=OrderStatus(row["order_status"]),
        payment_status=PaymentStatus(row["payment_status"]),
        payment_intent_id=row["payment_intent_id"],
        carrier=row["carrier"],
        tracking_number=row["tracking_number"],
        shipping_date=row["shipping_date"],
        user_id=row["user_id"],
        order_date=row["order_date"],
        order_total=row["order_total"],
    )


def _row_to_detail(row: asyncpg.Record) -> OrderDetail:
    return OrderDetail(
        id=row["id"],
        order_id=row["order_id"],
        product_id=row["product_id"],
        count=row["count"],
        price=row["price"],
    )


class PostgresOrderGateway:
    """
    Unit of work over one connection. Use as `async with PostgresOrderGateway(pool) as orders:`.
    The connection is taken from the pool on first use, so a request waiting on an order lock
    does not hold one. Leaving the block without commit() rolls back every update.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
        self._conn: asyncpg.Connection | None = None
        self._tx = None

    async def __aenter__(self) -> "PostgresOrderGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._conn is None:
            return
        try:
            if self._tx is not None:
                await self._tx.rollback()
        except DB_ERRORS as e:
            logger.warning("Rollback failed, releasing connection anyway: %s", e)
        finally:
            self._tx = None
            await self.pool.release(self._conn)
            self._conn = None

    async def _ensure_transaction(self) -> asyncpg.Connection:
        try:
            if self._conn is None:
                self._conn = await self.pool.acquire()
            if self._tx is None:
                tx = self._conn.transaction()
                await tx.start()
                self._tx = tx
        except DB_ERRORS as e:
            raise PersistenceError(f"could not open unit of work: {e}") from e
        return self._conn

    async def find_order(self, order_id: int) -> Order | None:
        conn = await self._ensure_transaction()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM orders WHERE id = $1 FOR UPDATE;",
                order_id,
            )
        except DB_ERRORS as e:
            raise PersistenceError(f"could not load order {order_id}: {e}") from e
        return _row_to_order(row) if row is not None else None

    async def find_order_details(self, order_id: int) -> list[OrderDetail]:
        conn = await self._ensure_transaction()
        try:
            rows = await conn.fetch(
                "SELECT * FROM order_details WHERE order_id = $1 ORDER BY id;",
                order_id,
            )
        except DB_ERRORS as e:
            raise PersistenceError(f"could not load details for order {order_id}: {e}") from e
        return [_row_to_detail(row) for row in rows]

    async def update_order(self, order: Order) -> None:
        conn = await self._ensure_transaction()
        try:
            await conn.execute(
                """
                UPDATE orders
                SET order_status = $1, payment_status = $2, carrier = $3,
                    tracking_number = $4, shipping_date = $5, updated_at = NOW()
                WHERE id = $6;
                """,
                order.order_status.value,
                order.payment_status.value,
                order.carrier,
                order.tracking_number,
                order.shipping_date,
                order.id,
            )
        except DB_ERRORS as e:
            raise PersistenceError(f"could not update order {order.id}: {e}") from e

    async def commit(self) -> None:
        """Commit pending updates. The next read or update starts a fresh transaction."""
        tx, self._tx = self._tx, None
        if tx is None:
            return
        try:
            await tx.commit()
        except DB_ERRORS as e:
            logger.error("Commit failed: %s", e)
            raise PersistenceError(f"commit failed: {e}") from e
