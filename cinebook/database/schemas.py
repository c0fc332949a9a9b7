# cinebook/database/schemas.py
# =========================================================
# 🧩 Seat Reservation & Booking Schemas (Pydantic v2 Compatible)
# =========================================================

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cinebook.database.models import BookingStatus, HoldStatus, SeatCategory, SeatState
from cinebook.database.payment_models import PaymentOutcome, PaymentStatus


# =========================================================
# ✅ Base Config for ORM Compatibility (Pydantic v2)
# =========================================================
class ConfigModel(BaseModel):
    class Config:
        from_attributes = True   # replaces orm_mode=True


# =========================================================
# 💺 Seat Map Schemas
# =========================================================
class SeatResponse(ConfigModel):
    seat_id: str
    row_label: str
    seat_number: int
    category: SeatCategory
    unit_price: Decimal
    status: SeatState
    held_by_you: bool = False
    hold_expires_at: Optional[datetime] = None


class SeatMapResponse(BaseModel):
    screening_id: str
    seats: List[SeatResponse]
    available_count: int


# =========================================================
# ⏳ Hold Schemas
# =========================================================
class HoldRequest(BaseModel):
    seat_ids: List[str] = Field(..., min_length=1, description="Seat labels, e.g. ['A1', 'A2']")
    holder_token: str = Field(..., min_length=1, max_length=128, description="Opaque per-client session token")

    model_config = {
        "json_schema_extra": {
            "example": {"seat_ids": ["A1", "A2"], "holder_token": "7b0c6f3e-session"}
        }
    }


class HoldResponse(ConfigModel):
    id: str
    screening_id: str
    seat_id: str
    status: HoldStatus
    expires_at: datetime


class HoldListResponse(BaseModel):
    holds: List[HoldResponse]
    expires_at: Optional[datetime] = Field(None, description="Earliest expiry among the holds")


class HoldIdsRequest(BaseModel):
    hold_ids: List[str] = Field(..., min_length=1)
    holder_token: str = Field(..., min_length=1, max_length=128)


class ReleaseResponse(BaseModel):
    released_seat_ids: List[str]


# =========================================================
# 🎟 Booking Schemas
# =========================================================
class CreateBookingRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    screening_id: str = Field(..., min_length=1, max_length=64)
    seat_ids: List[str] = Field(..., min_length=1)
    holder_token: str = Field(..., min_length=1, max_length=128)


class BookingSeatResponse(ConfigModel):
    seat_id: str
    row_label: str
    seat_number: int
    category: SeatCategory
    unit_price: Decimal


STATUS_MESSAGES = {
    BookingStatus.DRAFT: "Seats reserved, continue to payment",
    BookingStatus.AWAITING_PAYMENT: "Waiting for payment confirmation",
    BookingStatus.CONFIRMED: "Booking confirmed",
    BookingStatus.FAILED: "Payment failed, seats released",
    BookingStatus.EXPIRED: "Reservation timed out",
}


class BookingResponse(ConfigModel):
    id: str
    user_id: str
    screening_id: str
    seats: List[BookingSeatResponse]
    total_price: Decimal
    currency: str
    status: BookingStatus
    payment_reference: Optional[str] = None
    created_at: datetime
    draft_expires_at: Optional[datetime] = None
    payment_started_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    message: str = ""

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        response = cls.model_validate(booking)
        response.message = STATUS_MESSAGES.get(booking.status, "")
        return response


# =========================================================
# 💳 Payment Schemas
# =========================================================
class BeginPaymentRequest(BaseModel):
    restart: bool = Field(False, description="Supersede the outstanding session with a new one")


class PaymentSessionResponse(BaseModel):
    booking_id: str
    gateway: str
    gateway_reference: str
    amount: int = Field(..., description="Amount in minor units (paise)")
    currency: str
    client_payload: Dict[str, Any] = {}


class VerifyPaymentRequest(BaseModel):
    """
    Either a Razorpay checkout callback (razorpay_* fields) or, with the
    fallback gateway, a manual outcome for a dev- reference.
    """
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    gateway_reference: Optional[str] = None
    outcome: Optional[PaymentOutcome] = None
    payment_id: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "razorpay_order_id": "order_Nxxxx",
                    "razorpay_payment_id": "pay_Nxxxx",
                    "razorpay_signature": "generated_signature_here",
                },
                {"gateway_reference": "dev-1712345678901-1a2b3c4d", "outcome": "SUCCEEDED"},
            ]
        }
    }


class PaymentOutcomeResponse(BaseModel):
    applied: bool
    booking_id: str
    booking_status: BookingStatus
    attempt_status: PaymentStatus
    message: str = ""
