"""
Payment reconciliation: opens gateway sessions and turns gateway outcomes into
booking finalization.

Outcomes may arrive twice (callback and webhook), out of order, or after the
booking has already expired. Only a PENDING attempt is ever applied; a success
that lands on an expired, superseded or already failed attempt is recorded as
ORPHANED so the money can be refunded.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Union

from sqlalchemy.orm import Session

from cinebook.core.errors import BookingNotFound, GatewayUnavailable, InvalidSignature
from cinebook.database.database import SessionFactory, session_scope
from cinebook.database.models import BookingStatus
from cinebook.database.payment_models import PaymentAttempt, PaymentOutcome, PaymentStatus
from cinebook.services.payment_gateway import GatewayError
from cinebook.utils import new_id, utcnow

logger = logging.getLogger(__name__)

# Razorpay webhook events we act on; everything else is acknowledged and ignored
WEBHOOK_EVENTS = {
    "payment.captured": PaymentOutcome.SUCCEEDED,
    "order.paid": PaymentOutcome.SUCCEEDED,
    "payment.failed": PaymentOutcome.FAILED,
}


@dataclass
class PaymentSessionHandle:
    booking_id: str
    gateway: str
    gateway_reference: str
    amount: int  # minor units
    currency: str
    client_payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_attempt(cls, attempt: PaymentAttempt) -> "PaymentSessionHandle":
        return cls(
            booking_id=attempt.booking_id,
            gateway=attempt.gateway,
            gateway_reference=attempt.gateway_reference,
            amount=attempt.amount,
            currency=attempt.currency,
            client_payload=dict(attempt.client_payload or {}),
        )


class PaymentReconciliationAdapter:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway,
        key_secret: str = "",
        webhook_secret: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.gateway = gateway
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._clock = clock
        self._orchestrator = None

    def attach(self, orchestrator) -> None:
        """Outcomes finalize bookings through the orchestrator that owns booking state."""
        self._orchestrator = orchestrator

    # ---------------- Sessions ----------------
    def start_session(
        self,
        db: Session,
        booking_id: str,
        amount: int,
        currency: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> PaymentSessionHandle:
        """
        Open a gateway session and record it as a PENDING attempt in the caller's
        transaction. Transport failures surface as GatewayUnavailable and nothing
        is recorded.
        """
        notes = {"booking_id": booking_id, **(notes or {})}
        try:
            session = self.gateway.create_session(booking_id, amount, currency, notes)
        except GatewayError as e:
            logger.error(f"Gateway session failed for booking {booking_id}: {e}")
            raise GatewayUnavailable(booking_id=booking_id) from e

        now = self._clock()
        attempt = PaymentAttempt(
            id=new_id(),
            booking_id=booking_id,
            gateway=self.gateway.name,
            gateway_reference=session.reference,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            client_payload=session.client_payload,
            created_at=now,
            updated_at=now,
        )
        db.add(attempt)
        logger.info(f"Opened {self.gateway.name} session {session.reference} for booking {booking_id}")
        return PaymentSessionHandle.from_attempt(attempt)

    # ---------------- Outcomes ----------------
    def on_outcome(
        self,
        gateway_reference: str,
        outcome: Union[PaymentOutcome, str],
        payment_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Apply a gateway outcome exactly once.

        Returns {"applied", "booking_id", "booking_status", "attempt_status"}.
        Raises BookingNotFound when no attempt carries the reference.
        """
        outcome = PaymentOutcome(outcome)
        if self._orchestrator is None:
            raise RuntimeError("PaymentReconciliationAdapter is not attached to a booking orchestrator")

        with session_scope(self._session_factory) as db:
            now = self._clock()
            attempt = (
                db.query(PaymentAttempt)
                .filter(PaymentAttempt.gateway_reference == gateway_reference)
                .with_for_update()
                .first()
            )
            if attempt is None:
                raise BookingNotFound(f"No booking for payment reference {gateway_reference}")

            if attempt.status != PaymentStatus.PENDING:
                if outcome == PaymentOutcome.SUCCEEDED and attempt.status in (
                    PaymentStatus.EXPIRED,
                    PaymentStatus.SUPERSEDED,
                    PaymentStatus.FAILED,
                ):
                    attempt.status = PaymentStatus.ORPHANED
                    attempt.gateway_payment_id = payment_id or attempt.gateway_payment_id
                    attempt.meta = {**(attempt.meta or {}), "late_success": details or {}}
                    attempt.updated_at = now
                    logger.warning(
                        f"Payment {payment_id} for {gateway_reference} captured after booking "
                        f"{attempt.booking_id} closed; refund required"
                    )
                else:
                    logger.info(f"Duplicate {outcome.value} outcome for {gateway_reference} ignored")
                booking = self._orchestrator.get_booking(attempt.booking_id, db=db)
                return {
                    "applied": False,
                    "booking_id": attempt.booking_id,
                    "booking_status": booking.status,
                    "attempt_status": attempt.status,
                }

            new_status = PaymentStatus.SUCCEEDED if outcome == PaymentOutcome.SUCCEEDED else PaymentStatus.FAILED
            updated = (
                db.query(PaymentAttempt)
                .filter(PaymentAttempt.id == attempt.id, PaymentAttempt.status == PaymentStatus.PENDING)
                .update(
                    {
                        PaymentAttempt.status: new_status,
                        PaymentAttempt.gateway_payment_id: payment_id,
                        PaymentAttempt.meta: details or {},
                        PaymentAttempt.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                logger.info(f"Outcome for {gateway_reference} lost a race; ignored")
                booking = self._orchestrator.get_booking(attempt.booking_id, db=db)
                return {
                    "applied": False,
                    "booking_id": attempt.booking_id,
                    "booking_status": booking.status,
                    "attempt_status": attempt.status,
                }

            booking = self._orchestrator.finalize(attempt.booking_id, outcome, db=db)
            if outcome == PaymentOutcome.SUCCEEDED and booking.status != BookingStatus.CONFIRMED:
                new_status = PaymentStatus.ORPHANED
                db.query(PaymentAttempt).filter(PaymentAttempt.id == attempt.id).update(
                    {PaymentAttempt.status: new_status}, synchronize_session=False
                )
                logger.warning(
                    f"Payment {payment_id} for {gateway_reference} captured but booking {booking.id} "
                    f"is {booking.status.value}; refund required"
                )
            logger.info(f"Payment {gateway_reference} {outcome.value}; booking {booking.id} is {booking.status.value}")
            return {
                "applied": True,
                "booking_id": booking.id,
                "booking_status": booking.status,
                "attempt_status": new_status,
            }

    # ---------------- Signatures ----------------
    def verify_callback_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        """Checkout callback: HMAC-SHA256 of "order_id|payment_id" keyed with the key secret."""
        if not self._key_secret:
            raise InvalidSignature("Payment key secret not configured")
        expected = hmac.new(
            self._key_secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
        ).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning(f"Signature mismatch for order {order_id}")
            raise InvalidSignature()

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> None:
        if not self._webhook_secret or not signature:
            logger.warning("Webhook: missing signature or secret")
            raise InvalidSignature("Invalid webhook signature")
        expected = hmac.new(self._webhook_secret.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature):
            logger.warning("Webhook signature mismatch")
            raise InvalidSignature("Webhook signature verification failed")

    @staticmethod
    def parse_webhook(body: bytes) -> Optional[Tuple[str, PaymentOutcome, Optional[str], Dict[str, Any]]]:
        """(order_id, outcome, payment_id, entity) for events we act on, else None."""
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ValueError(f"Malformed webhook body: {e}") from e

        if not isinstance(payload, dict):
            raise ValueError("Malformed webhook body: expected a JSON object")
        outcome = WEBHOOK_EVENTS.get(payload.get("event"))
        if outcome is None:
            return None
        body_payload = payload.get("payload")
        if not isinstance(body_payload, dict):
            raise ValueError("Malformed webhook body: missing payload")
        entity = _entity(body_payload, "payment")
        order_id = entity.get("order_id") or _entity(body_payload, "order").get("id")
        if not order_id:
            return None
        return order_id, outcome, entity.get("id"), entity


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = payload.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict) or not isinstance(section.get("entity") or {}, dict):
        raise ValueError(f"Malformed webhook body: bad {name} entity")
    return section.get("entity") or {}
