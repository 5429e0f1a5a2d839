"""
Collaborator contracts used by the lifecycle manager.
"""
from dataclasses import dataclass
from typing import Protocol

from order_lifecycle.models import Order, OrderDetail


@dataclass(frozen=True)
class RefundReceipt:
    refund_id: str
    payment_intent_id: str
    status: str


class OrderGateway(Protocol):
    """Request-scoped order store with a unit of work. Raises PersistenceError on storage failure."""

    async def find_order(self, order_id: int) -> Order | None: ...

    async def find_order_details(self, order_id: int) -> list[OrderDetail]: ...

    async def update_order(self, order: Order) -> None: ...

    async def commit(self) -> None: ...


class PaymentGateway(Protocol):
    """Raises PaymentGatewayError when the refund is not issued."""

    async def refund(self, payment_intent_id: str) -> RefundReceipt: ...


class ReconciliationLog(Protocol):
    async def record(self, order: Order, receipt: RefundReceipt, error: Exception) -> None: ...
