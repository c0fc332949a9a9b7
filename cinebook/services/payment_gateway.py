# cinebook/services/payment_gateway.py
"""
Payment gateway transports (Razorpay + dev-friendly fallback).

A gateway only opens a checkout session and reports back its reference;
outcomes arrive later through the verify callback or the webhook.
"""
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Transport-level failure talking to the payment provider."""


@dataclass
class GatewaySession:
    reference: str  # Razorpay order_id
    client_payload: Dict[str, Any] = field(default_factory=dict)


def _receipt_for(booking_id: str) -> str:
    # Razorpay rejects receipts longer than 40 chars
    receipt = re.sub(r"[^A-Za-z0-9_]", "", f"bk_{booking_id}")[:40]
    return receipt or f"bk_{uuid.uuid4().hex[:8]}"


class RazorpayGateway:
    name = "razorpay"

    def __init__(self, key_id: str, key_secret: str, client: Optional[Any] = None):
        if client is None:
            if not key_id or not key_secret:
                raise GatewayError("Razorpay credentials not configured")
            import razorpay

            client = razorpay.Client(auth=(key_id, key_secret))
        self.key_id = key_id
        self._client = client

    def create_session(self, booking_id: str, amount: int, currency: str, notes: Dict[str, str]) -> GatewaySession:
        try:
            order = self._client.order.create(
                {
                    "amount": amount,
                    "currency": currency,
                    "receipt": _receipt_for(booking_id),
                    "notes": notes,
                }
            )
        except Exception as e:
            logger.warning(f"Razorpay order creation failed for booking {booking_id}: {e}")
            raise GatewayError(str(e)) from e

        order_id = order.get("id") if isinstance(order, dict) else None
        if not order_id:
            raise GatewayError("Razorpay returned an order without an id")
        return GatewaySession(
            reference=order_id,
            client_payload={
                "key_id": self.key_id,
                "order_id": order_id,
                "amount": order.get("amount", amount),
                "currency": order.get("currency", currency),
                "notes": notes,
            },
        )

    def health(self) -> Dict[str, Any]:
        try:
            self._client.order.all({"count": 1})
        except Exception as e:
            return {"gateway": self.name, "status": "unhealthy", "error": str(e)}
        return {
            "gateway": self.name,
            "status": "healthy",
            "key_id": self.key_id,
            "message": "Razorpay integration operational",
        }


class FallbackGateway:
    """Local gateway for development: sessions always open, outcomes are posted by hand."""

    name = "fallback"

    def create_session(self, booking_id: str, amount: int, currency: str, notes: Dict[str, str]) -> GatewaySession:
        reference = f"dev-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        return GatewaySession(
            reference=reference,
            client_payload={"order_id": reference, "amount": amount, "currency": currency, "notes": notes},
        )

    def health(self) -> Dict[str, Any]:
        return {"gateway": self.name, "status": "healthy", "message": "Fallback gateway mode active"}


def build_gateway(settings) -> Any:
    """Pick the transport from PAYMENT_GATEWAY; razorpay without credentials refuses to start."""
    if settings.PAYMENT_GATEWAY == "fallback":
        logger.warning("Using fallback payment gateway; do not use in production")
        return FallbackGateway()
    if settings.PAYMENT_GATEWAY == "razorpay":
        return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
    raise ValueError(f"Unknown PAYMENT_GATEWAY: {settings.PAYMENT_GATEWAY}")
