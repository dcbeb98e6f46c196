"""
Payment gateway client: storefront → Razorpay Orders API over HTTP.

Only order creation talks to the gateway. Payment confirmation is proven by a
signature the gateway hands to the customer's browser, which is verified
locally with the shared key secret:

    signature = hex(HMAC_SHA256(key_secret, "<order_id>|<payment_id>"))

Unconfirmed gateway orders expire on the gateway side, so an order created
here whose local transaction later fails needs no cleanup call.
"""

from dataclasses import dataclass, field
import hashlib
import hmac
import time
from typing import Any, Dict, Optional

import httpx

from storefront.config import StorefrontConfig
from storefront.errors import GatewayError
from storefront.logger import get_logger

logger = get_logger("payment_gateway")


@dataclass
class GatewayOrder:
    """Remote payment intent as returned by the gateway."""
    id: str
    amount: int  # minor units
    currency: str
    receipt: Optional[str] = None
    status: str = "created"
    notes: Dict[str, Any] = field(default_factory=dict)


def compute_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    """Expected checkout signature for a gateway order/payment pair."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient:
    """
    Async client for the Razorpay Orders API.

    transport is passed straight to httpx.AsyncClient (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: StorefrontConfig) -> "RazorpayClient":
        return cls(
            key_id=config.payments_key_id,
            key_secret=config.payments_key_secret,
            base_url=config.payments_base_url,
            timeout=config.payments_request_timeout_seconds,
        )

    async def create_order(
        self,
        amount_minor: int,
        currency: str,
        notes: Optional[Dict[str, Any]] = None,
        receipt: Optional[str] = None,
    ) -> GatewayOrder:
        """
        Create a remote order for amount_minor (paise/cents).

        Raises:
            GatewayError: not configured, unreachable, or the gateway rejected the request
        """
        if not self.key_id or not self.key_secret:
            raise GatewayError("Payment gateway credentials are not configured")
        if amount_minor <= 0:
            raise GatewayError(f"Order amount must be positive, got {amount_minor}")

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt or f"order_{int(time.time() * 1000)}",
            "notes": notes or {},
        }
        url = f"{self.base_url}/orders"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                auth=(self.key_id, self.key_secret),
                transport=self._transport,
            ) as client:
                resp = await client.post(url, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Gateway order creation failed: HTTP {e.response.status_code} body={e.response.text[:500]}")
            raise GatewayError("Failed to create payment order. Please try again.") from e
        except httpx.RequestError as e:
            logger.error(f"Gateway unreachable: {e}")
            raise GatewayError("Failed to create payment order. Please try again.") from e
        except ValueError as e:
            logger.error(f"Gateway returned a non-JSON body: {e}")
            raise GatewayError("Failed to create payment order. Please try again.") from e

        if not data.get("id"):
            logger.error(f"Gateway response missing order id: {data}")
            raise GatewayError("Failed to create payment order. Please try again.")

        order = GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt"),
            status=data.get("status", "created"),
            notes=data.get("notes") or {},
        )
        logger.info(f"Created gateway order {order.id} for {order.amount} {order.currency}")
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """True only if signature is exactly the HMAC of order_id|payment_id."""
        if not self.key_secret or not signature:
            return False
        expected = compute_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
