"""
Error taxonomy for the reservation and booking lifecycle.

Every error carries the HTTP status the API answers with and a short message
the UI can show as-is. Conflicts are raised to the caller; nothing in the core
retries them.
"""
from typing import Any, Dict, List, Optional


class BookingSystemError(Exception):
    status_code: int = 400
    code: str = "booking_error"
    user_message: str = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.user_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.context:
            body.update(self.context)
        return body


class SeatUnavailable(BookingSystemError):
    status_code = 409
    code = "seat_unavailable"
    user_message = "Seat no longer available, please reselect"

    def __init__(self, seat_ids: List[str], message: Optional[str] = None) -> None:
        self.seat_ids = list(seat_ids)
        super().__init__(message, seat_ids=self.seat_ids)


class SeatNotFound(BookingSystemError):
    status_code = 404
    code = "seat_not_found"
    user_message = "Seat does not exist for this screening"

    def __init__(self, seat_ids: List[str], message: Optional[str] = None) -> None:
        self.seat_ids = list(seat_ids)
        super().__init__(message, seat_ids=self.seat_ids)


class HoldExpired(BookingSystemError):
    status_code = 410
    code = "hold_expired"
    user_message = "Reservation timed out"


class HoldNotOwned(BookingSystemError):
    status_code = 409
    code = "hold_not_owned"
    user_message = "Seat no longer available, please reselect"


class HoldLimitExceeded(BookingSystemError):
    status_code = 422
    code = "hold_limit_exceeded"

    def __init__(self, limit: int, message: Optional[str] = None) -> None:
        self.limit = limit
        super().__init__(message or f"You can hold up to {limit} seats per screening", limit=limit)


class GatewayUnavailable(BookingSystemError):
    status_code = 503
    code = "gateway_unavailable"
    user_message = "Payment service unavailable, please try again"


class BookingNotFound(BookingSystemError):
    status_code = 404
    code = "booking_not_found"
    user_message = "Booking not found"


class InvalidStateTransition(BookingSystemError):
    status_code = 409
    code = "invalid_state_transition"
    user_message = "Booking cannot move to the requested state"


class InvalidSignature(BookingSystemError):
    status_code = 400
    code = "invalid_signature"
    user_message = "Signature verification failed"
