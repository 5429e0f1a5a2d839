"""
Prometheus metrics: lifecycle transitions by outcome, refunds, reconciliation flags.
"""
from prometheus_client import Counter, generate_latest

# outcome is "ok" or the error class name (OrderNotFoundError, PaymentGatewayError, ...)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order lifecycle transitions attempted",
    ["transition", "outcome"],
)

refunds_total = Counter(
    "refunds_total",
    "Total refund calls made on cancellation",
    ["outcome"],
)

refund_reconciliation_flags_total = Counter(
    "refund_reconciliation_flags_total",
    "Total refunds issued whose cancellation could not be committed",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
