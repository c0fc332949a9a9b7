# cinebook/routers/hold_routes.py
"""
Seat map and seat hold routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from cinebook.database.models import SeatState
from cinebook.database.schemas import (
    HoldIdsRequest,
    HoldListResponse,
    HoldRequest,
    HoldResponse,
    ReleaseResponse,
    SeatMapResponse,
    SeatResponse,
)
from cinebook.deps.services import get_reservations
from cinebook.services.reservation_service import ReservationManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Seats & Holds"])


def _hold_list(holds) -> HoldListResponse:
    return HoldListResponse(
        holds=[HoldResponse.model_validate(h) for h in holds],
        expires_at=min((h.expires_at for h in holds), default=None),
    )


@router.get("/screenings/{screening_id}/seats", response_model=SeatMapResponse)
def get_seat_map(
    screening_id: str,
    holder_token: Optional[str] = Query(None, description="Marks seats held by this session"),
    reservations: ReservationManager = Depends(get_reservations),
):
    seats = [SeatResponse.model_validate(s) for s in reservations.seat_map(screening_id, holder_token)]
    return SeatMapResponse(
        screening_id=screening_id,
        seats=seats,
        available_count=sum(1 for s in seats if s.status == SeatState.AVAILABLE),
    )


@router.post(
    "/screenings/{screening_id}/holds",
    response_model=HoldListResponse,
    status_code=status.HTTP_201_CREATED,
)
def hold_seats(
    screening_id: str,
    payload: HoldRequest,
    reservations: ReservationManager = Depends(get_reservations),
):
    holds = reservations.hold(screening_id, payload.seat_ids, payload.holder_token)
    return _hold_list(holds)


@router.get("/screenings/{screening_id}/holds", response_model=HoldListResponse)
def list_active_holds(
    screening_id: str,
    holder_token: str = Query(..., min_length=1),
    reservations: ReservationManager = Depends(get_reservations),
):
    return _hold_list(reservations.active_holds(screening_id, holder_token))


@router.post("/holds/renew", response_model=HoldListResponse)
def renew_holds(payload: HoldIdsRequest, reservations: ReservationManager = Depends(get_reservations)):
    return _hold_list(reservations.renew(payload.hold_ids, payload.holder_token))


@router.post("/holds/release", response_model=ReleaseResponse)
def release_holds(payload: HoldIdsRequest, reservations: ReservationManager = Depends(get_reservations)):
    released = reservations.release(payload.hold_ids, payload.holder_token)
    return ReleaseResponse(released_seat_ids=released)
