"""
Lifecycle error taxonomy. Collaborators raise these; the lifecycle manager returns them inside a result.
"""


class LifecycleError(Exception):
    """Base class for every failure a lifecycle operation can report."""


class OrderNotFoundError(LifecycleError):
    """No order with the requested identifier exists."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found")


class InvalidArgumentError(LifecycleError):
    """Required transition data is missing."""

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class InvalidTransitionError(LifecycleError):
    """Transition is not allowed from the order's current state."""

    def __init__(self, order_id: int, current_status: str, transition: str):
        self.order_id = order_id
        self.current_status = current_status
        self.transition = transition
        super().__init__(f"{transition} not allowed for order {order_id} in {current_status}")


class OrderBusyError(LifecycleError):
    """Another request holds the lock for this order."""

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"order {order_id} is locked by another request")


class PaymentGatewayError(LifecycleError):
    """Refund call failed. Nothing was committed."""

    def __init__(self, message: str, payment_intent_id: str | None = None):
        self.payment_intent_id = payment_intent_id
        super().__init__(message)


class PersistenceError(LifecycleError):
    """Fetch, update or commit against the order store failed."""


class PartialFailureError(LifecycleError):
    """Refund went through but the cancellation could not be committed. Needs an operator."""

    def __init__(self, order_id: int, payment_intent_id: str | None, refund_id: str | None, cause: Exception):
        self.order_id = order_id
        self.payment_intent_id = payment_intent_id
        self.refund_id = refund_id
        self.cause = cause
        super().__init__(
            f"order {order_id}: refund {refund_id} issued for {payment_intent_id} "
            f"but cancellation was not committed ({cause})"
        )
