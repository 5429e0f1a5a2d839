"""
Order lifecycle state machine: statuses, transitions and the predecessor rules that gate them.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_PROCESS = "IN_PROCESS"
    SHIPPED = "SHIPPED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    REJECTED = "REJECTED"


class Transition(str, Enum):
    ADVANCE_TO_PROCESSING = "ADVANCE_TO_PROCESSING"
    MARK_SHIPPED = "MARK_SHIPPED"
    CANCEL_ORDER = "CANCEL_ORDER"


TARGET_STATUS: dict[Transition, OrderStatus] = {
    Transition.ADVANCE_TO_PROCESSING: OrderStatus.IN_PROCESS,
    Transition.MARK_SHIPPED: OrderStatus.SHIPPED,
    Transition.CANCEL_ORDER: OrderStatus.CANCELLED,
}

# Transition -> order statuses it may start from
PERMISSIVE_PREDECESSORS: dict[Transition, frozenset[OrderStatus]] = {
    transition: frozenset(OrderStatus) for transition in Transition
}

STRICT_PREDECESSORS: dict[Transition, frozenset[OrderStatus]] = {
    Transition.ADVANCE_TO_PROCESSING: frozenset(
        {OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.IN_PROCESS}
    ),
    Transition.MARK_SHIPPED: frozenset(
        {OrderStatus.APPROVED, OrderStatus.IN_PROCESS, OrderStatus.SHIPPED}
    ),
    Transition.CANCEL_ORDER: frozenset(
        {OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.IN_PROCESS, OrderStatus.CANCELLED}
    ),
}

# A refunded payment pins the order to CANCELLED.
BLOCKED_BY_REFUND: frozenset[Transition] = frozenset(
    {Transition.ADVANCE_TO_PROCESSING, Transition.MARK_SHIPPED}
)


def predecessors_for(strict: bool) -> dict[Transition, frozenset[OrderStatus]]:
    return STRICT_PREDECESSORS if strict else PERMISSIVE_PREDECESSORS


def is_valid_transition(
    current_status: OrderStatus,
    payment_status: PaymentStatus,
    transition: Transition,
    strict: bool = False,
) -> bool:
    """True if transition is allowed for an order in current_status with payment_status."""
    if payment_status == PaymentStatus.REFUNDED and transition in BLOCKED_BY_REFUND:
        return False
    allowed = predecessors_for(strict).get(transition, frozenset())
    return current_status in allowed


def requires_refund(payment_status: PaymentStatus) -> bool:
    """Only a captured (approved) payment is refunded on cancellation."""
    return payment_status == PaymentStatus.APPROVED
