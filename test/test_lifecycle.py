import asyncio
from datetime import datetime, timezone

import pytest
from prometheus_client import REGISTRY

from _helper import FakeOrderGateway, FakePaymentGateway, make_order
from order_lifecycle.errors import (
    InvalidArgumentError,
    InvalidTransitionError,
    OrderBusyError,
    OrderNotFoundError,
    PartialFailureError,
    PaymentGatewayError,
    PersistenceError,
)
from order_lifecycle.lifecycle import OrderLifecycleManager
from order_lifecycle.locks import LocalOrderLocks
from order_lifecycle.order_state import OrderStatus, PaymentStatus, Transition

# -------------------------
# AdvanceToProcessing
# -------------------------


async def test_advance_to_processing_sets_in_process(manager, orders):
    result = await manager.advance_to_processing(1)

    assert result.ok
    stored = orders.stored(1)
    assert stored.order_status == OrderStatus.IN_PROCESS
    assert stored.payment_status == PaymentStatus.APPROVED
    assert orders.count("update_order") == 1
    assert orders.count("commit") == 1


async def test_advance_to_processing_twice_is_harmless(manager, orders):
    await manager.advance_to_processing(2)
    result = await manager.advance_to_processing(2)

    assert result.ok
    assert orders.stored(2).order_status == OrderStatus.IN_PROCESS
    assert orders.stored(2).payment_status == PaymentStatus.PENDING


# -------------------------
# MarkShipped
# -------------------------


async def test_mark_shipped_updates_order_fields(manager, orders):
    result = await manager.mark_shipped(1, "DHL", "123456")

    assert result.ok
    stored = orders.stored(1)
    assert stored.carrier == "DHL"
    assert stored.tracking_number == "123456"
    assert stored.order_status == OrderStatus.SHIPPED
    assert stored.shipping_date <= datetime.now(timezone.utc)
    assert orders.count("update_order") == 1
    assert orders.count("commit") == 1


async def test_mark_shipped_uses_injected_clock(orders, payments):
    shipped_at = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    manager = OrderLifecycleManager(orders, payments, clock=lambda: shipped_at)

    await manager.mark_shipped(1, "UPS", "1Z999")

    assert orders.stored(1).shipping_date == shipped_at


@pytest.mark.parametrize(
    "carrier, tracking, field",
    [
        ("", "123456", "carrier"),
        ("   ", "123456", "carrier"),
        (None, "123456", "carrier"),
        ("DHL", "", "tracking_number"),
    ],
)
async def test_mark_shipped_requires_carrier_and_tracking(manager, orders, carrier, tracking, field):
    result = await manager.mark_shipped(1, carrier, tracking)

    assert isinstance(result.error, InvalidArgumentError)
    assert result.error.field == field
    assert orders.calls == []
    assert orders.stored(1).order_status == OrderStatus.APPROVED


async def test_mark_shipped_allows_any_predecessor_by_default(orders, payments):
    orders.rows[3] = make_order(3, order_status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED)
    manager = OrderLifecycleManager(orders, payments)

    result = await manager.mark_shipped(3, "DHL", "42")

    assert result.ok
    assert orders.stored(3).order_status == OrderStatus.SHIPPED


async def test_strict_policy_rejects_shipping_cancelled_order(orders, payments):
    orders.rows[3] = make_order(3, order_status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED)
    manager = OrderLifecycleManager(orders, payments, strict=True)

    result = await manager.mark_shipped(3, "DHL", "42")

    assert isinstance(result.error, InvalidTransitionError)
    assert result.error.current_status == "CANCELLED"
    assert orders.count("commit") == 0
    assert orders.stored(3).order_status == OrderStatus.CANCELLED


async def test_refunded_order_cannot_be_shipped(manager, orders):
    await manager.cancel_order(1)

    result = await manager.mark_shipped(1, "DHL", "42")

    assert isinstance(result.error, InvalidTransitionError)
    assert orders.stored(1).order_status == OrderStatus.CANCELLED
    assert orders.stored(1).shipping_date is None


# -------------------------
# CancelOrder
# -------------------------


async def test_cancel_approved_payment_refunds_and_cancels(manager, orders, payments):
    result = await manager.cancel_order(1)

    assert result.ok
    assert payments.refunds == ["pi_123"]
    assert result.refund.refund_id == "re_1"
    stored = orders.stored(1)
    assert stored.order_status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert orders.count("commit") == 1


async def test_cancel_pending_payment_just_cancels(manager, orders, payments):
    result = await manager.cancel_order(2)

    assert result.ok
    assert result.refund is None
    assert payments.refunds == []
    stored = orders.stored(2)
    assert stored.order_status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.PENDING
    assert orders.count("commit") == 1


@pytest.mark.parametrize("payment_status", [PaymentStatus.REJECTED, PaymentStatus.CANCELLED])
async def test_cancel_leaves_non_approved_payment_status(orders, payments, payment_status):
    orders.rows[5] = make_order(5, order_status=OrderStatus.IN_PROCESS, payment_status=payment_status)
    manager = OrderLifecycleManager(orders, payments)

    await manager.cancel_order(5)

    assert payments.refunds == []
    assert orders.stored(5).payment_status == payment_status
    assert orders.stored(5).order_status == OrderStatus.CANCELLED


async def test_cancel_twice_refunds_once(manager, orders, payments):
    first = await manager.cancel_order(1)
    second = await manager.cancel_order(1)

    assert first.ok and second.ok
    assert payments.refunds == ["pi_123"]
    assert orders.stored(1).payment_status == PaymentStatus.REFUNDED


async def test_concurrent_cancels_refund_once(orders):
    payments = FakePaymentGateway(delay=0.01)
    manager = OrderLifecycleManager(orders, payments, locks=LocalOrderLocks())

    results = await asyncio.gather(*(manager.cancel_order(1) for _ in range(3)))

    assert all(r.ok for r in results)
    assert payments.refunds == ["pi_123"]


async def test_refund_failure_leaves_order_untouched(orders):
    payments = FakePaymentGateway(fail=True)
    manager = OrderLifecycleManager(orders, payments)

    result = await manager.cancel_order(1)

    assert isinstance(result.error, PaymentGatewayError)
    assert result.order is None
    assert payments.refunds == ["pi_123"]
    assert orders.count("update_order") == 0
    assert orders.count("commit") == 0
    stored = orders.stored(1)
    assert stored.order_status == OrderStatus.APPROVED
    assert stored.payment_status == PaymentStatus.APPROVED


async def test_approved_payment_without_intent_is_not_refunded(orders, payments):
    orders.rows[6] = make_order(6, order_status=OrderStatus.APPROVED, payment_status=PaymentStatus.APPROVED)
    manager = OrderLifecycleManager(orders, payments)

    result = await manager.cancel_order(6)

    assert isinstance(result.error, PaymentGatewayError)
    assert payments.refunds == []
    assert orders.count("commit") == 0
    assert orders.stored(6).order_status == OrderStatus.APPROVED


async def test_commit_failure_after_refund_is_partial_failure(manager, orders, payments, reconciliation):
    orders.fail_commit = True

    result = await manager.cancel_order(1)

    assert isinstance(result.error, PartialFailureError)
    assert isinstance(result.error.cause, PersistenceError)
    assert result.error.refund_id == "re_1"
    assert result.refund.payment_intent_id == "pi_123"
    assert payments.refunds == ["pi_123"]
    assert len(reconciliation.entries) == 1
    flagged, receipt, _ = reconciliation.entries[0]
    assert flagged.id == 1
    assert receipt.refund_id == "re_1"
    assert orders.stored(1).order_status == OrderStatus.APPROVED


async def test_commit_failure_without_refund_is_persistence_error(manager, orders, reconciliation):
    orders.fail_commit = True

    result = await manager.cancel_order(2)

    assert isinstance(result.error, PersistenceError)
    assert not isinstance(result.error, PartialFailureError)
    assert reconciliation.entries == []


class DroppedConnectionGateway(FakeOrderGateway):
    """Store whose driver fails with its own exception type instead of PersistenceError."""

    async def update_order(self, order):
        self.calls.append(("update_order", order.id))
        raise ConnectionAbortedError("connection is closed")


async def test_any_save_failure_after_refund_is_partial_failure(approved_order, payments, reconciliation):
    orders = DroppedConnectionGateway([approved_order])
    manager = OrderLifecycleManager(orders, payments, reconciliation=reconciliation)
    before = REGISTRY.get_sample_value("refund_reconciliation_flags_total") or 0

    result = await manager.cancel_order(1)

    assert isinstance(result.error, PartialFailureError)
    assert isinstance(result.error.cause, ConnectionAbortedError)
    assert payments.refunds == ["pi_123"]
    assert len(reconciliation.entries) == 1
    assert REGISTRY.get_sample_value("refund_reconciliation_flags_total") == before + 1


async def test_save_failure_without_refund_propagates(pending_order, payments, reconciliation):
    orders = DroppedConnectionGateway([pending_order])
    manager = OrderLifecycleManager(orders, payments, reconciliation=reconciliation)

    with pytest.raises(ConnectionAbortedError):
        await manager.cancel_order(2)

    assert reconciliation.entries == []


async def test_cancel_shipped_order_clears_shipping_date(manager, orders):
    await manager.mark_shipped(2, "DHL", "42")

    await manager.cancel_order(2)

    stored = orders.stored(2)
    assert stored.order_status == OrderStatus.CANCELLED
    assert stored.shipping_date is None
    assert stored.tracking_number == "42"


# -------------------------
# Missing orders, locking, view
# -------------------------


@pytest.mark.parametrize(
    "call",
    [
        lambda m: m.advance_to_processing(999),
        lambda m: m.mark_shipped(999, "DHL", "123"),
        lambda m: m.cancel_order(999),
    ],
)
async def test_missing_order_is_not_found(manager, orders, payments, call):
    result = await call(manager)

    assert isinstance(result.error, OrderNotFoundError)
    assert result.error.order_id == 999
    assert orders.count("update_order") == 0
    assert orders.count("commit") == 0
    assert payments.refunds == []


async def test_busy_order_lock_reports_order_busy(orders, payments):
    locks = LocalOrderLocks(wait_seconds=0.01)
    manager = OrderLifecycleManager(orders, payments, locks=locks)

    async with locks.hold(1):
        result = await manager.cancel_order(1)

    assert isinstance(result.error, OrderBusyError)
    assert payments.refunds == []
    assert orders.calls == []


async def test_get_order_view_returns_header_and_details(manager):
    result = await manager.get_order_view(1)

    assert result.ok
    assert result.view.order.id == 1
    assert [d.product_id for d in result.view.details] == [10, 11]


async def test_get_order_view_missing_order(manager, orders):
    result = await manager.get_order_view(999)

    assert isinstance(result.error, OrderNotFoundError)
    assert orders.count("find_order_details") == 0


async def test_transitions_are_counted_by_outcome(manager):
    labels = {"transition": Transition.CANCEL_ORDER.value, "outcome": "OrderNotFoundError"}
    before = REGISTRY.get_sample_value("order_transitions_total", labels) or 0

    await manager.cancel_order(999)

    assert REGISTRY.get_sample_value("order_transitions_total", labels) == before + 1


async def test_manager_does_not_share_state_between_gateways(approved_order, payments):
    first = FakeOrderGateway([approved_order])
    second = FakeOrderGateway([approved_order])

    await OrderLifecycleManager(first, payments).cancel_order(1)

    assert second.stored(1).order_status == OrderStatus.APPROVED
