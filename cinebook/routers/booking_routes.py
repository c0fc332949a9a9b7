# cinebook/routers/booking_routes.py
"""
Booking routes: create from holds, start payment, read back
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, status

from cinebook.database.schemas import (
    BeginPaymentRequest,
    BookingResponse,
    CreateBookingRequest,
    PaymentSessionResponse,
)
from cinebook.deps.services import get_bookings
from cinebook.services.booking_service import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bookings"])


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(payload: CreateBookingRequest, bookings: BookingOrchestrator = Depends(get_bookings)):
    booking = bookings.create_booking(
        user_id=payload.user_id,
        screening_id=payload.screening_id,
        seat_ids=payload.seat_ids,
        holder_token=payload.holder_token,
    )
    return BookingResponse.from_booking(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, bookings: BookingOrchestrator = Depends(get_bookings)):
    return BookingResponse.from_booking(bookings.get_booking(booking_id))


@router.get("/users/{user_id}/bookings", response_model=List[BookingResponse])
def list_user_bookings(user_id: str, bookings: BookingOrchestrator = Depends(get_bookings)):
    return [BookingResponse.from_booking(b) for b in bookings.list_user_bookings(user_id)]


@router.post("/bookings/{booking_id}/payment", response_model=PaymentSessionResponse)
def begin_payment(
    booking_id: str,
    payload: Optional[BeginPaymentRequest] = Body(None),
    bookings: BookingOrchestrator = Depends(get_bookings),
):
    handle = bookings.begin_payment(booking_id, restart=bool(payload and payload.restart))
    return PaymentSessionResponse(
        booking_id=handle.booking_id,
        gateway=handle.gateway,
        gateway_reference=handle.gateway_reference,
        amount=handle.amount,
        currency=handle.currency,
        client_payload=handle.client_payload,
    )
