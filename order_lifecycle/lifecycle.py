"""
Order lifecycle manager.

Every operation loads the order under a per-order lock, checks the transition is allowed,
computes the new (order status, payment status) pair, refunds a captured payment when the
order is cancelled, then updates and commits exactly once. Failures come back as typed
errors inside TransitionResult; nothing is retried here.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from order_lifecycle import metrics
from order_lifecycle.errors import (
    InvalidArgumentError,
    InvalidTransitionError,
    LifecycleError,
    OrderNotFoundError,
    PartialFailureError,
    PaymentGatewayError,
)
from order_lifecycle.gateways import OrderGateway, PaymentGateway, ReconciliationLog, RefundReceipt
from order_lifecycle.locks import LocalOrderLocks, OrderLocks
from order_lifecycle.models import Order, OrderView
from order_lifecycle.order_state import (
    OrderStatus,
    PaymentStatus,
    Transition,
    is_valid_transition,
    requires_refund,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransitionResult:
    order_id: int
    transition: Transition
    order: Order | None = None
    error: LifecycleError | None = None
    refund: RefundReceipt | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class OrderViewResult:
    order_id: int
    view: OrderView | None = None
    error: LifecycleError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OrderLifecycleManager:
    def __init__(
        self,
        orders: OrderGateway,
        payments: PaymentGateway,
        locks: OrderLocks | None = None,
        reconciliation: ReconciliationLog | None = None,
        strict: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.orders = orders
        self.payments = payments
        self.locks = locks or LocalOrderLocks()
        self.reconciliation = reconciliation
        self.strict = strict
        self.clock = clock

    async def advance_to_processing(self, order_id: int) -> TransitionResult:
        """Set order status to IN_PROCESS. Payment status is untouched."""

        async def apply(order: Order) -> None:
            order.order_status = OrderStatus.IN_PROCESS
            order.shipping_date = None

        return await self._run(order_id, Transition.ADVANCE_TO_PROCESSING, apply)

    async def mark_shipped(self, order_id: int, carrier: str, tracking_number: str) -> TransitionResult:
        """Record carrier and tracking number, stamp the shipping date and set status SHIPPED."""
        carrier = (carrier or "").strip()
        tracking_number = (tracking_number or "").strip()
        if not carrier:
            return self._finish(TransitionResult(order_id, Transition.MARK_SHIPPED, error=InvalidArgumentError("carrier")))
        if not tracking_number:
            return self._finish(
                TransitionResult(order_id, Transition.MARK_SHIPPED, error=InvalidArgumentError("tracking_number"))
            )

        async def apply(order: Order) -> None:
            order.carrier = carrier
            order.tracking_number = tracking_number
            order.shipping_date = self.clock()
            order.order_status = OrderStatus.SHIPPED

        return await self._run(order_id, Transition.MARK_SHIPPED, apply)

    async def cancel_order(self, order_id: int) -> TransitionResult:
        """
        Cancel the order. An APPROVED payment is refunded first and becomes REFUNDED;
        any other payment status is left as it is. If the refund fails the order is not touched.
        """
        return await self._run(order_id, Transition.CANCEL_ORDER, self._apply_cancel)

    async def get_order_view(self, order_id: int) -> OrderViewResult:
        result = OrderViewResult(order_id=order_id)
        try:
            order = await self.orders.find_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            details = await self.orders.find_order_details(order_id)
            result.view = OrderView(order=order, details=details)
        except LifecycleError as e:
            result.error = e
        return result

    async def _apply_cancel(self, order: Order) -> RefundReceipt | None:
        receipt = None
        if requires_refund(order.payment_status):
            if not order.has_captured_payment:
                raise PaymentGatewayError("approved payment has no payment intent to refund")
            receipt = await self._refund(order)
            order.payment_status = PaymentStatus.REFUNDED
        order.order_status = OrderStatus.CANCELLED
        order.shipping_date = None
        return receipt

    async def _refund(self, order: Order) -> RefundReceipt:
        try:
            receipt = await self.payments.refund(order.payment_intent_id)
        except PaymentGatewayError:
            metrics.refunds_total.labels(outcome="failed").inc()
            raise
        metrics.refunds_total.labels(outcome="ok").inc()
        logger.info("Refunded order_id=%s payment_intent=%s refund_id=%s", order.id, order.payment_intent_id, receipt.refund_id)
        return receipt

    async def _run(
        self,
        order_id: int,
        transition: Transition,
        apply: Callable[[Order], Awaitable[RefundReceipt | None]],
    ) -> TransitionResult:
        result = TransitionResult(order_id=order_id, transition=transition)
        try:
            async with self.locks.hold(order_id):
                order = await self.orders.find_order(order_id)
                if order is None:
                    raise OrderNotFoundError(order_id)
                if not is_valid_transition(order.order_status, order.payment_status, transition, self.strict):
                    raise InvalidTransitionError(order.id, order.order_status.value, transition.value)
                result.refund = await apply(order)
                await self._save(order, result.refund)
                result.order = order
        except LifecycleError as e:
            result.error = e
        return self._finish(result)

    async def _save(self, order: Order, receipt: RefundReceipt | None) -> None:
        try:
            await self.orders.update_order(order)
            await self.orders.commit()
        except Exception as e:
            # Once money has moved, any failure to save must reach an operator.
            if receipt is None:
                raise
            await self._flag_for_reconciliation(order, receipt, e)
            raise PartialFailureError(order.id, receipt.payment_intent_id, receipt.refund_id, e) from e

    async def _flag_for_reconciliation(self, order: Order, receipt: RefundReceipt, error: Exception) -> None:
        metrics.refund_reconciliation_flags_total.inc()
        logger.critical(
            "Refund %s issued for order_id=%s but cancellation was not committed: %s",
            receipt.refund_id,
            order.id,
            error,
        )
        if self.reconciliation is None:
            return
        try:
            await self.reconciliation.record(order, receipt, error)
        except Exception:
            logger.exception("Could not record reconciliation entry for order_id=%s", order.id)

    def _finish(self, result: TransitionResult) -> TransitionResult:
        outcome = "ok" if result.ok else type(result.error).__name__
        metrics.order_transitions_total.labels(transition=result.transition.value, outcome=outcome).inc()
        if result.ok:
            logger.info(
                "order_id=%s %s -> order_status=%s payment_status=%s",
                result.order_id,
                result.transition.value,
                result.order.order_status.value,
                result.order.payment_status.value,
            )
        else:
            logger.warning("order_id=%s %s failed: %s", result.order_id, result.transition.value, result.error)
        return result
