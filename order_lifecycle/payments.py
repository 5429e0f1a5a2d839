"""
Stripe refunds. The HTTP call is blocking (requests), so it runs in a thread.
"""
import asyncio
import logging

import requests

from order_lifecycle.config import settings
from order_lifecycle.errors import PaymentGatewayError
from order_lifecycle.gateways import RefundReceipt

logger = logging.getLogger(__name__)

FAILED_REFUND_STATUSES = ("failed", "canceled")


class StripeRefundGateway:
    """
    Issues refunds against captured PaymentIntents through the Stripe REST API.
    """

    def __init__(self, api_key: str | None, base_url: str = "https://api.stripe.com", timeout: float = 10.0):
        # A missing key only fails refunds; processing and shipping never reach Stripe.
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _post_refund(self, payment_intent_id: str) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            # Stripe replays the first response for a repeated key, so a retried cancel cannot refund twice
            "Idempotency-Key": f"refund-{payment_intent_id}",
        }
        response = requests.post(
            f"{self.base_url}/v1/refunds",
            headers=headers,
            data={"payment_intent": payment_intent_id},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def refund(self, payment_intent_id: str) -> RefundReceipt:
        if not self.api_key:
            logger.error("Cannot refund %s: STRIPE_API_KEY is not configured", payment_intent_id)
            raise PaymentGatewayError("Stripe API key is not configured", payment_intent_id=payment_intent_id)
        logger.info("Requesting refund for payment intent %s", payment_intent_id)
        try:
            body = await asyncio.to_thread(self._post_refund, payment_intent_id)
        except requests.exceptions.HTTPError as e:
            logger.error(
                "Stripe refund failed for %s: %s - %s",
                payment_intent_id,
                e.response.status_code,
                e.response.text,
            )
            raise PaymentGatewayError(
                f"refund rejected with HTTP {e.response.status_code}",
                payment_intent_id=payment_intent_id,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error("Stripe refund request for %s did not complete: %s", payment_intent_id, e)
            raise PaymentGatewayError(f"refund request failed: {e}", payment_intent_id=payment_intent_id) from e

        status = body.get("status", "")
        if status in FAILED_REFUND_STATUSES:
            logger.error("Stripe refund %s for %s ended in status %s", body.get("id"), payment_intent_id, status)
            raise PaymentGatewayError(f"refund {status}", payment_intent_id=payment_intent_id)

        logger.info("Refund %s issued for %s (status=%s)", body.get("id"), payment_intent_id, status)
        return RefundReceipt(refund_id=body.get("id", ""), payment_intent_id=payment_intent_id, status=status)


_payment_gateway: StripeRefundGateway | None = None


def get_payment_gateway() -> StripeRefundGateway:
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = StripeRefundGateway(
            api_key=settings.stripe_api_key,
            base_url=settings.stripe_api_base,
            timeout=settings.payment_timeout_sec,
        )
    return _payment_gateway
