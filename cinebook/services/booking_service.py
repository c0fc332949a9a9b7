"""
Booking lifecycle: DRAFT -> AWAITING_PAYMENT -> CONFIRMED | FAILED | EXPIRED.

Status changes are conditional updates on the booking row, so a booking is
finalized at most once no matter how many outcomes or sweeps race for it.
Seats enter a booking only through ReservationManager.promote and leave it only
through ReservationManager.release_booking_seats.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Union

from sqlalchemy import exists
from sqlalchemy.orm import Session

from cinebook.core.config import CURRENCY, PAYMENT_WINDOW_SECONDS
from cinebook.core.errors import (
    BookingNotFound,
    HoldExpired,
    HoldNotOwned,
    InvalidStateTransition,
    SeatNotFound,
)
from cinebook.database.database import SessionFactory, session_scope
from cinebook.database.models import (
    Booking,
    BookingSeat,
    BookingStatus,
    ScreeningSeat,
    SeatState,
)
from cinebook.database.payment_models import PaymentAttempt, PaymentOutcome, PaymentStatus
from cinebook.services.catalog import InventoryCatalog
from cinebook.services.payment_service import PaymentReconciliationAdapter, PaymentSessionHandle
from cinebook.services.reservation_service import ReservationManager
from cinebook.utils import new_id, to_decimal, to_minor_units, unique_in_order, utcnow

logger = logging.getLogger(__name__)


class BookingOrchestrator:
    def __init__(
        self,
        session_factory: SessionFactory,
        reservations: ReservationManager,
        payments: PaymentReconciliationAdapter,
        catalog: Optional[InventoryCatalog] = None,
        payment_window_seconds: int = PAYMENT_WINDOW_SECONDS,
        currency: str = CURRENCY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._reservations = reservations
        self._payments = payments
        self._catalog = catalog or InventoryCatalog(session_factory)
        self.payment_window = timedelta(seconds=payment_window_seconds)
        self.currency = currency
        self._clock = clock

    # ---------------- Create ----------------
    def create_booking(
        self,
        user_id: str,
        screening_id: str,
        seat_ids: Sequence[str],
        holder_token: str,
    ) -> Booking:
        """
        Promote the caller's holds on seat_ids and create a DRAFT booking, in one
        transaction. Fails with HoldExpired when a hold lapsed or was released and
        HoldNotOwned when the seat now belongs to someone else.
        """
        wanted = unique_in_order(seat_ids)
        if not wanted:
            raise ValueError("seat_ids must not be empty")
        if not user_id:
            raise ValueError("user_id is required")
        if not holder_token:
            raise ValueError("holder_token is required")

        with session_scope(self._session_factory) as db:
            now = self._clock()
            seats = {
                s.seat_id: s
                for s in db.query(ScreeningSeat)
                .filter(ScreeningSeat.screening_id == screening_id, ScreeningSeat.seat_id.in_(wanted))
                .all()
            }
            missing = [sid for sid in wanted if sid not in seats]
            if missing:
                raise SeatNotFound(missing)

            taken = [
                sid for sid in wanted
                if seats[sid].status == SeatState.BOOKED
                or (
                    seats[sid].status == SeatState.HELD
                    and seats[sid].holder_token != holder_token
                    and seats[sid].expires_at is not None
                    and seats[sid].expires_at > now
                )
            ]
            if taken:
                raise HoldNotOwned("Seat no longer available, please reselect", seat_ids=taken)
            lapsed = [
                sid for sid in wanted
                if seats[sid].status != SeatState.HELD or seats[sid].holder_token != holder_token
            ]
            if lapsed:
                raise HoldExpired(seat_ids=lapsed)

            hold_ids = [seats[sid].hold_id for sid in wanted]
            draft_expires_at = min(seats[sid].expires_at for sid in wanted)
            booking_id = new_id()
            self._reservations.promote(hold_ids, holder_token, booking_id, db=db)

            info = self._catalog.get_seats(screening_id, wanted, db=db)
            total = to_decimal(sum((info[sid].unit_price for sid in wanted), to_decimal(0)))
            booking = Booking(
                id=booking_id,
                user_id=user_id,
                screening_id=screening_id,
                holder_token=holder_token,
                total_price=total,
                currency=self.currency,
                status=BookingStatus.DRAFT,
                draft_expires_at=draft_expires_at,
                created_at=now,
                updated_at=now,
            )
            booking.seats = [
                BookingSeat(
                    screening_id=screening_id,
                    seat_id=sid,
                    row_label=info[sid].row_label,
                    seat_number=info[sid].seat_number,
                    category=info[sid].category,
                    unit_price=info[sid].unit_price,
                )
                for sid in wanted
            ]
            booking.payment_attempts = []
            db.add(booking)

        logger.info(f"Booking {booking.id} created for user {user_id}: seats {wanted}, total {total}")
        return booking

    # ---------------- Payment ----------------
    def begin_payment(self, booking_id: str, restart: bool = False) -> PaymentSessionHandle:
        """
        Move DRAFT -> AWAITING_PAYMENT and open a gateway session.

        The booking row stays locked across the gateway call, so repeated calls
        return the one outstanding session instead of opening another. With
        restart=True the outstanding session is superseded by a fresh one. If the
        draft's holds already ran out, or the payment window has closed, the
        booking expires and HoldExpired is raised.
        """
        expired = False
        with session_scope(self._session_factory) as db:
            booking = self._locked_booking(db, booking_id)
            now = self._clock()

            if booking.status == BookingStatus.AWAITING_PAYMENT:
                if booking.payment_started_at <= now - self.payment_window:
                    self._expire(db, booking, now)
                    expired = True
                else:
                    pending = (
                        db.query(PaymentAttempt)
                        .filter(
                            PaymentAttempt.booking_id == booking.id,
                            PaymentAttempt.status == PaymentStatus.PENDING,
                        )
                        .order_by(PaymentAttempt.created_at.desc())
                        .with_for_update()
                        .first()
                    )
                    if pending is not None and not restart:
                        return PaymentSessionHandle.from_attempt(pending)
                    handle = self._open_session(db, booking)
                    if pending is not None:
                        pending.status = PaymentStatus.SUPERSEDED
                        pending.updated_at = now
                        logger.info(
                            f"Payment session {pending.gateway_reference} superseded for booking {booking.id}"
                        )
                    booking.payment_reference = handle.gateway_reference
                    booking.updated_at = now
                    return handle
            elif booking.status != BookingStatus.DRAFT:
                raise InvalidStateTransition(
                    f"Cannot start payment for a {booking.status.value} booking",
                    booking_id=booking.id,
                    status=booking.status.value,
                )
            elif booking.draft_expires_at <= now:
                self._expire(db, booking, now)
                expired = True
            else:
                handle = self._open_session(db, booking)
                booking.status = BookingStatus.AWAITING_PAYMENT
                booking.payment_reference = handle.gateway_reference
                booking.payment_started_at = now
                booking.updated_at = now

        if expired:
            raise HoldExpired(booking_id=booking_id)
        logger.info(f"Booking {booking_id} awaiting payment on {handle.gateway_reference}")
        return handle

    def _open_session(self, db: Session, booking: Booking) -> PaymentSessionHandle:
        return self._payments.start_session(
            db,
            booking.id,
            to_minor_units(booking.total_price),
            booking.currency,
            notes={
                "screening_id": booking.screening_id,
                "seat_ids": ",".join(booking.seat_ids),
                "user_id": booking.user_id,
            },
        )

    # ---------------- Finalize ----------------
    def finalize(
        self,
        booking_id: str,
        outcome: Union[PaymentOutcome, str],
        db: Optional[Session] = None,
    ) -> Booking:
        """
        AWAITING_PAYMENT -> CONFIRMED on success, FAILED (seats back to AVAILABLE)
        on failure. A booking that is already terminal is returned unchanged.
        """
        outcome = PaymentOutcome(outcome)
        if db is None:
            with session_scope(self._session_factory) as own_db:
                return self._finalize(own_db, booking_id, outcome)
        return self._finalize(db, booking_id, outcome)

    def _finalize(self, db: Session, booking_id: str, outcome: PaymentOutcome) -> Booking:
        booking = self._locked_booking(db, booking_id)
        if booking.status.is_terminal:
            logger.info(f"Booking {booking_id} already {booking.status.value}; {outcome.value} ignored")
            return booking
        if booking.status != BookingStatus.AWAITING_PAYMENT:
            raise InvalidStateTransition(
                f"Cannot finalize a {booking.status.value} booking",
                booking_id=booking_id,
                status=booking.status.value,
            )

        now = self._clock()
        target = BookingStatus.CONFIRMED if outcome == PaymentOutcome.SUCCEEDED else BookingStatus.FAILED
        updated = (
            db.query(Booking)
            .filter(Booking.id == booking_id, Booking.status == BookingStatus.AWAITING_PAYMENT)
            .update(
                {Booking.status: target, Booking.finalized_at: now, Booking.updated_at: now},
                synchronize_session=False,
            )
        )
        if updated == 1 and target == BookingStatus.FAILED:
            self._reservations.release_booking_seats(booking_id, db=db)
        db.refresh(booking)
        return booking

    # ---------------- Reads ----------------
    def get_booking(self, booking_id: str, db: Optional[Session] = None) -> Booking:
        if db is None:
            with session_scope(self._session_factory) as own_db:
                return self._get(own_db, booking_id)
        return self._get(db, booking_id)

    @staticmethod
    def _get(db: Session, booking_id: str) -> Booking:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise BookingNotFound(booking_id=booking_id)
        return booking

    def list_user_bookings(self, user_id: str) -> List[Booking]:
        with session_scope(self._session_factory) as db:
            return (
                db.query(Booking)
                .filter(Booking.user_id == user_id)
                .order_by(Booking.created_at.desc())
                .all()
            )

    # ---------------- Expiry ----------------
    def stale_draft_ids(self, limit: int = 200) -> List[str]:
        with session_scope(self._session_factory) as db:
            now = self._clock()
            rows = (
                db.query(Booking.id)
                .filter(Booking.status == BookingStatus.DRAFT, Booking.draft_expires_at <= now)
                .limit(limit)
                .all()
            )
            return [r.id for r in rows]

    def stale_payment_ids(self, limit: int = 200) -> List[str]:
        with session_scope(self._session_factory) as db:
            cutoff = self._clock() - self.payment_window
            rows = (
                db.query(Booking.id)
                .filter(
                    Booking.status == BookingStatus.AWAITING_PAYMENT,
                    Booking.payment_started_at <= cutoff,
                )
                .limit(limit)
                .all()
            )
            return [r.id for r in rows]

    def expire_booking(self, booking_id: str) -> bool:
        """
        Expire a DRAFT whose holds ran out, or an AWAITING_PAYMENT booking whose
        payment window closed without a successful outcome. Returns False when
        the booking moved on in the meantime.
        """
        with session_scope(self._session_factory) as db:
            now = self._clock()
            succeeded = exists().where(
                PaymentAttempt.booking_id == booking_id,
                PaymentAttempt.status == PaymentStatus.SUCCEEDED,
            )
            updated = (
                db.query(Booking)
                .filter(
                    Booking.id == booking_id,
                    (
                        (Booking.status == BookingStatus.DRAFT) & (Booking.draft_expires_at <= now)
                    ) | (
                        (Booking.status == BookingStatus.AWAITING_PAYMENT)
                        & (Booking.payment_started_at <= now - self.payment_window)
                        & ~succeeded
                    ),
                )
                .update(
                    {Booking.status: BookingStatus.EXPIRED, Booking.finalized_at: now, Booking.updated_at: now},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                return False
            self._close_expired(db, booking_id, now)
        logger.info(f"Booking {booking_id} expired")
        return True

    def _expire(self, db: Session, booking: Booking, now: datetime) -> None:
        booking.status = BookingStatus.EXPIRED
        booking.finalized_at = now
        booking.updated_at = now
        self._close_expired(db, booking.id, now)
        logger.info(f"Booking {booking.id} expired on payment attempt")

    def _close_expired(self, db: Session, booking_id: str, now: datetime) -> None:
        self._reservations.release_booking_seats(booking_id, db=db)
        db.query(PaymentAttempt).filter(
            PaymentAttempt.booking_id == booking_id,
            PaymentAttempt.status == PaymentStatus.PENDING,
        ).update(
            {PaymentAttempt.status: PaymentStatus.EXPIRED, PaymentAttempt.updated_at: now},
            synchronize_session=False,
        )

    @staticmethod
    def _locked_booking(db: Session, booking_id: str) -> Booking:
        booking = db.query(Booking).filter(Booking.id == booking_id).with_for_update().first()
        if booking is None:
            raise BookingNotFound(booking_id=booking_id)
        return booking
