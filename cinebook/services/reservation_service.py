"""
Seat holds: the only component that moves a seat between AVAILABLE, HELD and BOOKED.

Every state change is a conditional UPDATE on the inventory row (compare-and-set
on status / hold / expiry) inside a single transaction, so of two concurrent
requests for the same seat exactly one matches the row. A HELD row whose
expires_at has passed is claimable even before the sweeper reaches it.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from cinebook.core.config import HOLD_TTL_SECONDS, MAX_SEATS_PER_HOLDER
from cinebook.core.errors import (
    HoldExpired,
    HoldLimitExceeded,
    HoldNotOwned,
    SeatNotFound,
    SeatUnavailable,
)
from cinebook.database.database import SessionFactory, session_scope
from cinebook.database.models import HoldStatus, ScreeningSeat, SeatHold, SeatState
from cinebook.services.catalog import InventoryCatalog
from cinebook.utils import new_id, unique_in_order, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _claimable(now: datetime):
    """AVAILABLE, or HELD with a hold that has already run out."""
    return or_(
        ScreeningSeat.status == SeatState.AVAILABLE,
        and_(ScreeningSeat.status == SeatState.HELD, ScreeningSeat.expires_at <= now),
    )


def _freed_seat_values() -> Dict[Any, Any]:
    return {
        ScreeningSeat.status: SeatState.AVAILABLE,
        ScreeningSeat.hold_id: None,
        ScreeningSeat.holder_token: None,
        ScreeningSeat.expires_at: None,
        ScreeningSeat.booking_id: None,
        ScreeningSeat.version: ScreeningSeat.version + 1,
    }


def _require_token(holder_token: str) -> None:
    if not holder_token or not holder_token.strip():
        raise ValueError("holder_token is required")


def _lock_holder(db: Session, screening_id: str, holder_token: str) -> None:
    """Serialize hold requests of one holder on one screening until commit."""
    # SQLite transactions are already serialized by BEGIN IMMEDIATE
    if db.get_bind().dialect.name == "postgresql":
        db.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(f"hold:{screening_id}:{holder_token}")))
        )


class ReservationManager:
    def __init__(
        self,
        session_factory: SessionFactory,
        catalog: Optional[InventoryCatalog] = None,
        hold_ttl_seconds: int = HOLD_TTL_SECONDS,
        max_seats_per_holder: int = MAX_SEATS_PER_HOLDER,
        clock: Clock = utcnow,
    ):
        if hold_ttl_seconds <= 0:
            raise ValueError("hold_ttl_seconds must be positive")
        self._session_factory = session_factory
        self._catalog = catalog or InventoryCatalog(session_factory)
        self.hold_ttl = timedelta(seconds=hold_ttl_seconds)
        self.max_seats_per_holder = max_seats_per_holder
        self._clock = clock

    # ---------------- Hold ----------------
    def hold(self, screening_id: str, seat_ids: Sequence[str], holder_token: str) -> List[SeatHold]:
        """
        Atomically hold every requested seat for holder_token; all succeed or none do.

        Raises SeatNotFound for seats the screening does not have, HoldLimitExceeded
        when the holder would exceed the per-screening cap and SeatUnavailable
        (listing every conflicting seat) when any seat is HELD or BOOKED by someone.
        """
        _require_token(holder_token)
        wanted = unique_in_order(seat_ids)
        if not wanted:
            raise ValueError("seat_ids must not be empty")

        with session_scope(self._session_factory) as db:
            now = self._clock()
            known = self._catalog.get_seats(screening_id, wanted, db=db)
            missing = [sid for sid in wanted if sid not in known]
            if missing:
                raise SeatNotFound(missing)

            _lock_holder(db, screening_id, holder_token)
            already_held = (
                db.query(func.count(ScreeningSeat.id))
                .filter(
                    ScreeningSeat.screening_id == screening_id,
                    ScreeningSeat.status == SeatState.HELD,
                    ScreeningSeat.holder_token == holder_token,
                    ScreeningSeat.expires_at > now,
                )
                .scalar()
            ) or 0
            if already_held + len(wanted) > self.max_seats_per_holder:
                raise HoldLimitExceeded(self.max_seats_per_holder)

            expires_at = now + self.hold_ttl
            holds: List[SeatHold] = []
            conflicts: List[str] = []
            for seat_id in wanted:
                hold_id = new_id()
                updated = (
                    db.query(ScreeningSeat)
                    .filter(
                        ScreeningSeat.screening_id == screening_id,
                        ScreeningSeat.seat_id == seat_id,
                        _claimable(now),
                    )
                    .update(
                        {
                            ScreeningSeat.status: SeatState.HELD,
                            ScreeningSeat.hold_id: hold_id,
                            ScreeningSeat.holder_token: holder_token,
                            ScreeningSeat.expires_at: expires_at,
                            ScreeningSeat.booking_id: None,
                            ScreeningSeat.version: ScreeningSeat.version + 1,
                        },
                        synchronize_session=False,
                    )
                )
                if updated != 1:
                    conflicts.append(seat_id)
                    continue

                # a lapsed hold that was not swept yet loses the seat here
                db.query(SeatHold).filter(
                    SeatHold.screening_id == screening_id,
                    SeatHold.seat_id == seat_id,
                    SeatHold.status == HoldStatus.ACTIVE,
                ).update(
                    {SeatHold.status: HoldStatus.EXPIRED, SeatHold.closed_at: now},
                    synchronize_session=False,
                )
                holds.append(
                    SeatHold(
                        id=hold_id,
                        screening_id=screening_id,
                        seat_id=seat_id,
                        holder_token=holder_token,
                        status=HoldStatus.ACTIVE,
                        created_at=now,
                        expires_at=expires_at,
                    )
                )

            if conflicts:
                logger.info(f"Hold rejected for screening {screening_id}: seats {conflicts} unavailable")
                raise SeatUnavailable(conflicts)

            db.add_all(holds)

        logger.info(f"Held seats {wanted} for screening {screening_id} until {expires_at.isoformat()}")
        return holds

    # ---------------- Renew ----------------
    def renew(self, hold_ids: Sequence[str], holder_token: str) -> List[SeatHold]:
        """Push expiry of every hold to now + TTL; all-or-nothing, HoldExpired if any has lapsed."""
        _require_token(holder_token)
        wanted = unique_in_order(hold_ids)
        if not wanted:
            raise ValueError("hold_ids must not be empty")

        with session_scope(self._session_factory) as db:
            now = self._clock()
            new_expiry = now + self.hold_ttl
            for hold_id in wanted:
                updated = (
                    db.query(ScreeningSeat)
                    .filter(
                        ScreeningSeat.hold_id == hold_id,
                        ScreeningSeat.status == SeatState.HELD,
                        ScreeningSeat.holder_token == holder_token,
                        ScreeningSeat.expires_at > now,
                    )
                    .update(
                        {ScreeningSeat.expires_at: new_expiry, ScreeningSeat.version: ScreeningSeat.version + 1},
                        synchronize_session=False,
                    )
                )
                if updated != 1:
                    raise HoldExpired(hold_ids=[hold_id])

            holds = db.query(SeatHold).filter(SeatHold.id.in_(wanted)).all()
            for h in holds:
                h.expires_at = new_expiry

        return sorted(holds, key=lambda h: wanted.index(h.id))

    # ---------------- Release ----------------
    def release(self, hold_ids: Sequence[str], holder_token: str) -> List[str]:
        """
        Give up holds. Idempotent: holds that are unknown, belong to someone else
        or are already closed are skipped. Returns the seat ids freed.
        """
        _require_token(holder_token)
        wanted = unique_in_order(hold_ids)
        if not wanted:
            return []

        released: List[str] = []
        with session_scope(self._session_factory) as db:
            now = self._clock()
            holds = (
                db.query(SeatHold)
                .filter(
                    SeatHold.id.in_(wanted),
                    SeatHold.holder_token == holder_token,
                    SeatHold.status == HoldStatus.ACTIVE,
                )
                .all()
            )
            for h in holds:
                updated = (
                    db.query(ScreeningSeat)
                    .filter(ScreeningSeat.hold_id == h.id, ScreeningSeat.status == SeatState.HELD)
                    .update(_freed_seat_values(), synchronize_session=False)
                )
                h.status = HoldStatus.RELEASED
                h.closed_at = now
                if updated:
                    released.append(h.seat_id)

        if released:
            logger.info(f"Released seats {released}")
        return released

    # ---------------- Promote ----------------
    def promote(
        self,
        hold_ids: Sequence[str],
        holder_token: str,
        booking_id: str,
        db: Optional[Session] = None,
    ) -> List[str]:
        """
        Turn unexpired holds into BOOKED seats tied to booking_id.

        Pass the caller's session to make the promotion part of its transaction;
        on HoldExpired / HoldNotOwned the caller must roll back (session_scope does).
        """
        wanted = unique_in_order(hold_ids)
        if not wanted:
            raise ValueError("hold_ids must not be empty")
        if db is None:
            with session_scope(self._session_factory) as own_db:
                return self._promote(own_db, wanted, holder_token, booking_id)
        return self._promote(db, wanted, holder_token, booking_id)

    def _promote(self, db: Session, hold_ids: List[str], holder_token: str, booking_id: str) -> List[str]:
        now = self._clock()
        holds = {h.id: h for h in db.query(SeatHold).filter(SeatHold.id.in_(hold_ids)).all()}
        for hold_id in hold_ids:
            h = holds.get(hold_id)
            if h is None:
                raise HoldExpired(hold_ids=[hold_id])
            if h.holder_token != holder_token:
                raise HoldNotOwned(hold_ids=[hold_id])

        seat_ids: List[str] = []
        for hold_id in hold_ids:
            updated = (
                db.query(ScreeningSeat)
                .filter(
                    ScreeningSeat.hold_id == hold_id,
                    ScreeningSeat.status == SeatState.HELD,
                    ScreeningSeat.holder_token == holder_token,
                    ScreeningSeat.expires_at > now,
                )
                .update(
                    {
                        ScreeningSeat.status: SeatState.BOOKED,
                        ScreeningSeat.booking_id: booking_id,
                        ScreeningSeat.hold_id: None,
                        ScreeningSeat.holder_token: None,
                        ScreeningSeat.expires_at: None,
                        ScreeningSeat.version: ScreeningSeat.version + 1,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise HoldExpired(hold_ids=[hold_id])

            h = holds[hold_id]
            h.status = HoldStatus.PROMOTED
            h.booking_id = booking_id
            h.closed_at = now
            seat_ids.append(h.seat_id)

        logger.info(f"Promoted holds {hold_ids} to booking {booking_id}")
        return seat_ids

    # ---------------- Booking seats ----------------
    def release_booking_seats(self, booking_id: str, db: Optional[Session] = None) -> List[str]:
        """Return the BOOKED seats of a failed / expired booking to AVAILABLE."""
        if db is None:
            with session_scope(self._session_factory) as own_db:
                return self._release_booking_seats(own_db, booking_id)
        return self._release_booking_seats(db, booking_id)

    @staticmethod
    def _release_booking_seats(db: Session, booking_id: str) -> List[str]:
        seat_ids = [
            sid
            for (sid,) in db.query(ScreeningSeat.seat_id).filter(
                ScreeningSeat.booking_id == booking_id,
                ScreeningSeat.status == SeatState.BOOKED,
            )
        ]
        if seat_ids:
            db.query(ScreeningSeat).filter(
                ScreeningSeat.booking_id == booking_id,
                ScreeningSeat.status == SeatState.BOOKED,
            ).update(_freed_seat_values(), synchronize_session=False)
            logger.info(f"Returned seats {seat_ids} of booking {booking_id} to inventory")
        return seat_ids

    # ---------------- Expiry ----------------
    def expired_hold_ids(self, limit: int = 200) -> List[str]:
        with session_scope(self._session_factory) as db:
            now = self._clock()
            rows = (
                db.query(SeatHold.id)
                .filter(SeatHold.status == HoldStatus.ACTIVE, SeatHold.expires_at <= now)
                .order_by(SeatHold.expires_at)
                .limit(limit)
                .all()
            )
            return [r.id for r in rows]

    def expire_hold(self, hold_id: str) -> bool:
        """
        Close one lapsed hold and free its seat. Returns False when the hold was
        renewed, promoted or released in the meantime.
        """
        with session_scope(self._session_factory) as db:
            now = self._clock()
            closed = (
                db.query(SeatHold)
                .filter(
                    SeatHold.id == hold_id,
                    SeatHold.status == HoldStatus.ACTIVE,
                    SeatHold.expires_at <= now,
                )
                .update({SeatHold.status: HoldStatus.EXPIRED, SeatHold.closed_at: now}, synchronize_session=False)
            )
            if closed != 1:
                return False
            db.query(ScreeningSeat).filter(
                ScreeningSeat.hold_id == hold_id,
                ScreeningSeat.status == SeatState.HELD,
                ScreeningSeat.expires_at <= now,
            ).update(_freed_seat_values(), synchronize_session=False)
        return True

    # ---------------- Reads ----------------
    def seat_map(self, screening_id: str, holder_token: Optional[str] = None) -> List[Dict[str, Any]]:
        """Current seat states; holds that already ran out read as AVAILABLE."""
        with session_scope(self._session_factory) as db:
            now = self._clock()
            rows = (
                db.query(ScreeningSeat)
                .filter(ScreeningSeat.screening_id == screening_id)
                .order_by(ScreeningSeat.row_label, ScreeningSeat.seat_number)
                .all()
            )
            seats = []
            for r in rows:
                status = r.status
                held_by_you = False
                if status == SeatState.HELD:
                    if r.expires_at is None or r.expires_at <= now:
                        status = SeatState.AVAILABLE
                    else:
                        held_by_you = bool(holder_token) and r.holder_token == holder_token
                seats.append({
                    "seat_id": r.seat_id,
                    "row_label": r.row_label,
                    "seat_number": r.seat_number,
                    "category": r.category,
                    "unit_price": r.unit_price,
                    "status": status,
                    "held_by_you": held_by_you,
                    "hold_expires_at": r.expires_at if held_by_you else None,
                })
            return seats

    def active_holds(self, screening_id: str, holder_token: str) -> List[SeatHold]:
        _require_token(holder_token)
        with session_scope(self._session_factory) as db:
            now = self._clock()
            return (
                db.query(SeatHold)
                .filter(
                    SeatHold.screening_id == screening_id,
                    SeatHold.holder_token == holder_token,
                    SeatHold.status == HoldStatus.ACTIVE,
                    SeatHold.expires_at > now,
                )
                .order_by(SeatHold.created_at, SeatHold.seat_id)
                .all()
            )
