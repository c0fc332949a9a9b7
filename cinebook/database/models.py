# cinebook/database/models.py
import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from cinebook.database.database import Base
from cinebook.utils import utcnow


def _enum_column(enum_cls, **kwargs) -> Column:
    return Column(Enum(enum_cls, native_enum=False, length=20, create_constraint=False), **kwargs)


class SeatState(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    HELD = "HELD"
    BOOKED = "BOOKED"


class SeatCategory(str, enum.Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


class HoldStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    PROMOTED = "PROMOTED"


class BookingStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_BOOKING_STATUSES


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.FAILED, BookingStatus.EXPIRED}
)


# ==========================
# SEAT INVENTORY
# ==========================
class ScreeningSeat(Base):
    """
    One row per (screening, seat). Catalog columns (category, unit_price) are a
    read-only snapshot; status columns change only through conditional updates.
    """
    __tablename__ = "screening_seats"
    __table_args__ = (
        UniqueConstraint("screening_id", "seat_id", name="uq_screening_seat"),
        Index("ix_screening_seats_status", "screening_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    screening_id = Column(String(64), nullable=False, index=True)
    seat_id = Column(String(16), nullable=False)
    row_label = Column(String(8), nullable=False)
    seat_number = Column(Integer, nullable=False)
    category = _enum_column(SeatCategory, nullable=False, default=SeatCategory.STANDARD)
    unit_price = Column(Numeric(10, 2), nullable=False)

    status = _enum_column(SeatState, nullable=False, default=SeatState.AVAILABLE)
    hold_id = Column(String(36), nullable=True, index=True)
    holder_token = Column(String(128), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    booking_id = Column(String(36), nullable=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ==========================
# HOLDS
# ==========================
class SeatHold(Base):
    __tablename__ = "seat_holds"
    __table_args__ = (
        Index("ix_seat_holds_status_expiry", "status", "expires_at"),
        Index("ix_seat_holds_holder", "screening_id", "holder_token", "status"),
    )

    id = Column(String(36), primary_key=True)
    screening_id = Column(String(64), nullable=False)
    seat_id = Column(String(16), nullable=False)
    holder_token = Column(String(128), nullable=False)
    status = _enum_column(HoldStatus, nullable=False, default=HoldStatus.ACTIVE)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    closed_at = Column(DateTime, nullable=True)
    booking_id = Column(String(36), nullable=True)


# ==========================
# BOOKINGS
# ==========================
class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_status_started", "status", "payment_started_at"),
        Index("ix_bookings_status_draft_expiry", "status", "draft_expires_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    screening_id = Column(String(64), nullable=False, index=True)
    holder_token = Column(String(128), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="INR")
    status = _enum_column(BookingStatus, nullable=False, default=BookingStatus.DRAFT)
    payment_reference = Column(String(100), nullable=True, index=True)
    draft_expires_at = Column(DateTime, nullable=False)
    payment_started_at = Column(DateTime, nullable=True)
    finalized_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    seats = relationship(
        "BookingSeat",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSeat.id",
        lazy="selectin",
    )
    payment_attempts = relationship(
        "PaymentAttempt",
        back_populates="booking",
        order_by="PaymentAttempt.created_at",
        lazy="selectin",
    )

    @property
    def seat_ids(self):
        return [s.seat_id for s in self.seats]


class BookingSeat(Base):
    __tablename__ = "booking_seats"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    screening_id = Column(String(64), nullable=False)
    seat_id = Column(String(16), nullable=False)
    row_label = Column(String(8), nullable=False)
    seat_number = Column(Integer, nullable=False)
    category = _enum_column(SeatCategory, nullable=False, default=SeatCategory.STANDARD)
    unit_price = Column(Numeric(10, 2), nullable=False)

    booking = relationship("Booking", back_populates="seats")


# registered here so the "PaymentAttempt" relationship resolves
from cinebook.database.payment_models import PaymentAttempt  # noqa: E402,F401
