# test/conftest.py
from __future__ import annotations

from decimal import Decimal
from typing import List

import pytest

from _helper import FakeOrderGateway, FakePaymentGateway, FakeReconciliationLog, make_order
from order_lifecycle.lifecycle import OrderLifecycleManager
from order_lifecycle.locks import LocalOrderLocks
from order_lifecycle.models import Order, OrderDetail
from order_lifecycle.order_state import OrderStatus, PaymentStatus


@pytest.fixture
def approved_order() -> Order:
    return make_order(
        1,
        order_status=OrderStatus.APPROVED,
        payment_status=PaymentStatus.APPROVED,
        payment_intent_id="pi_123",
    )


@pytest.fixture
def pending_order() -> Order:
    return make_order(2, order_status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING)


@pytest.fixture
def order_details() -> List[OrderDetail]:
    return [
        OrderDetail(id=1, order_id=1, product_id=10, count=2, price=Decimal("19.99")),
        OrderDetail(id=2, order_id=1, product_id=11, count=1, price=Decimal("19.99")),
    ]


@pytest.fixture
def orders(approved_order, pending_order, order_details) -> FakeOrderGateway:
    return FakeOrderGateway([approved_order, pending_order], order_details)


@pytest.fixture
def payments() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def reconciliation() -> FakeReconciliationLog:
    return FakeReconciliationLog()


@pytest.fixture
def manager(orders, payments, reconciliation) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        orders,
        payments,
        locks=LocalOrderLocks(wait_seconds=1.0),
        reconciliation=reconciliation,
    )
