"""
Catalog snapshot of seats per screening.

Seat existence, category and unit price come from the catalog; the core reads
them but never changes them. The default catalog reads the columns stored on
the inventory rows, which are written once when a screening's seats are
registered.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from cinebook.database.database import SessionFactory, session_scope
from cinebook.database.models import ScreeningSeat, SeatCategory, SeatState
from cinebook.utils import seat_label, to_decimal

logger = logging.getLogger(__name__)


class SeatInfo(NamedTuple):
    seat_id: str
    row_label: str
    seat_number: int
    category: SeatCategory
    unit_price: Decimal


class InventoryCatalog:
    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_seats(self, screening_id: str, seat_ids: Iterable[str], db: Optional[Session] = None) -> Dict[str, SeatInfo]:
        """Return {seat_id: SeatInfo} for the seats that exist; unknown ids are left out."""
        wanted = list(seat_ids)
        if not wanted:
            return {}
        if db is None:
            with session_scope(self._session_factory) as own_db:
                return self._load(own_db, screening_id, wanted)
        return self._load(db, screening_id, wanted)

    @staticmethod
    def _load(db: Session, screening_id: str, seat_ids: List[str]) -> Dict[str, SeatInfo]:
        rows = (
            db.query(
                ScreeningSeat.seat_id,
                ScreeningSeat.row_label,
                ScreeningSeat.seat_number,
                ScreeningSeat.category,
                ScreeningSeat.unit_price,
            )
            .filter(ScreeningSeat.screening_id == screening_id, ScreeningSeat.seat_id.in_(seat_ids))
            .all()
        )
        return {
            r.seat_id: SeatInfo(r.seat_id, r.row_label, r.seat_number, r.category, to_decimal(r.unit_price))
            for r in rows
        }

    def register_screening(self, screening_id: str, seats: Iterable[dict]) -> int:
        """
        Register the seats of a scheduled screening in the inventory.

        Each seat is a dict with row_label, seat_number, unit_price and an
        optional category ("standard" | "premium"). Seats that already exist are
        left untouched, so the call is safe to repeat. Returns the number of
        seats added.
        """
        added = 0
        with session_scope(self._session_factory) as db:
            existing = {
                sid for (sid,) in db.query(ScreeningSeat.seat_id).filter(ScreeningSeat.screening_id == screening_id)
            }
            for seat in seats:
                sid = seat_label(seat["row_label"], seat["seat_number"])
                if sid in existing:
                    continue
                price = to_decimal(seat["unit_price"])
                if price < 0:
                    raise ValueError(f"unit_price must not be negative (seat {sid})")
                db.add(
                    ScreeningSeat(
                        screening_id=screening_id,
                        seat_id=sid,
                        row_label=seat["row_label"].strip().upper(),
                        seat_number=int(seat["seat_number"]),
                        category=SeatCategory(seat.get("category") or SeatCategory.STANDARD.value),
                        unit_price=price,
                        status=SeatState.AVAILABLE,
                    )
                )
                existing.add(sid)
                added += 1
        logger.info("Registered %d seat(s) for screening %s", added, screening_id)
        return added
