"""
Order aggregate and its read-only line items.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from order_lifecycle.order_state import OrderStatus, PaymentStatus


@dataclass
class Order:
    id: int
    order_status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: str | None = None
    carrier: str | None = None
    tracking_number: str | None = None
    shipping_date: datetime | None = None
    user_id: str | None = None
    order_date: datetime | None = None
    order_total: Decimal = Decimal("0")

    @property
    def has_captured_payment(self) -> bool:
        return bool(self.payment_intent_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_status": self.order_status.value,
            "payment_status": self.payment_status.value,
            "payment_intent_id": self.payment_intent_id,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "shipping_date": self.shipping_date.isoformat() if self.shipping_date else None,
            "user_id": self.user_id,
            "order_date": self.order_date.isoformat() if self.order_date else None,
            "order_total": str(self.order_total),
        }


@dataclass(frozen=True)
class OrderDetail:
    id: int
    order_id: int
    product_id: int
    count: int
    price: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "count": self.count,
            "price": str(self.price),
        }


@dataclass
class OrderView:
    """An order together with its line items, for display."""

    order: Order
    details: list[OrderDetail] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "details": [d.to_dict() for d in self.details],
        }
