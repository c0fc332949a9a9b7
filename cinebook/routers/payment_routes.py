# cinebook/routers/payment_routes.py
"""
Payment routes (Razorpay + dev-friendly fallback)

Both the checkout callback (/verify) and the gateway webhook feed the same
reconciliation step, so whichever arrives second is a no-op.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from cinebook.core.errors import BookingNotFound
from cinebook.database.payment_models import PaymentOutcome
from cinebook.database.schemas import STATUS_MESSAGES, PaymentOutcomeResponse, VerifyPaymentRequest
from cinebook.deps.services import get_payments
from cinebook.services.payment_service import PaymentReconciliationAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _outcome_response(result: Dict[str, Any]) -> PaymentOutcomeResponse:
    message = STATUS_MESSAGES.get(result["booking_status"], "")
    if not result["applied"]:
        message = f"Already processed: {message}" if message else "Already processed"
    return PaymentOutcomeResponse(message=message, **result)


@router.get("/health")
def payment_health(payments: PaymentReconciliationAdapter = Depends(get_payments)) -> Dict[str, Any]:
    return payments.gateway.health()


@router.post("/verify", response_model=PaymentOutcomeResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    payments: PaymentReconciliationAdapter = Depends(get_payments),
):
    """
    Verify payment - accepts both:
      - Razorpay checkout callbacks (razorpay_order_id, razorpay_payment_id, razorpay_signature)
      - Fallback-gateway outcomes { gateway_reference, outcome, payment_id }
    """
    if payload.razorpay_signature:
        if not payload.razorpay_order_id or not payload.razorpay_payment_id:
            raise HTTPException(status_code=400, detail="razorpay_order_id and razorpay_payment_id are required")
        payments.verify_callback_signature(
            payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature
        )
        result = payments.on_outcome(
            payload.razorpay_order_id,
            PaymentOutcome.SUCCEEDED,
            payment_id=payload.razorpay_payment_id,
            details={"source": "callback"},
        )
        return _outcome_response(result)

    if payload.gateway_reference and payload.outcome:
        if payments.gateway.name != "fallback":
            raise HTTPException(status_code=400, detail="Signed gateway payload required")
        result = payments.on_outcome(
            payload.gateway_reference,
            payload.outcome,
            payment_id=payload.payment_id,
            details={"source": "fallback"},
        )
        return _outcome_response(result)

    raise HTTPException(status_code=400, detail="Missing payment verification fields")


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentReconciliationAdapter = Depends(get_payments),
) -> Dict[str, Any]:
    body_bytes = await request.body()
    payments.verify_webhook_signature(body_bytes, x_razorpay_signature)

    parsed = payments.parse_webhook(body_bytes)
    if parsed is None:
        return {"status": "ignored"}

    order_id, outcome, payment_id, entity = parsed
    try:
        result = await run_in_threadpool(
            payments.on_outcome, order_id, outcome, payment_id, {"source": "webhook", "entity": entity}
        )
    except BookingNotFound:
        # not ours (or already purged); acknowledge so the gateway stops retrying
        logger.warning(f"Webhook: no booking for order {order_id}")
        return {"status": "ignored"}

    logger.info(f"Webhook: {outcome.value} for order {order_id} (applied={result['applied']})")
    return {"status": "ok", "applied": result["applied"], "booking_id": result["booking_id"]}
