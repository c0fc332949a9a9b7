# cinebook/database/payment_models.py
"""
Payment-related database models
"""
import enum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from cinebook.database.database import Base
from cinebook.utils import utcnow


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SUPERSEDED = "SUPERSEDED"  # replaced by a newer session for the same booking
    EXPIRED = "EXPIRED"        # booking expired while the attempt was pending
    ORPHANED = "ORPHANED"      # money captured after the booking expired; needs refund


class PaymentOutcome(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class PaymentAttempt(Base):
    """One outstanding gateway session for a booking."""
    __tablename__ = "payment_attempts"

    id = Column(String(36), primary_key=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    gateway = Column(String(20), nullable=False)
    gateway_reference = Column(String(100), unique=True, nullable=False, index=True)  # Razorpay order_id
    gateway_payment_id = Column(String(100), nullable=True, index=True)  # Razorpay payment_id
    amount = Column(Integer, nullable=False)  # minor units (paise)
    currency = Column(String(10), nullable=False, default="INR")
    status = Column(Enum(PaymentStatus, native_enum=False, length=20, create_constraint=False),
                    nullable=False, default=PaymentStatus.PENDING)
    client_payload = Column(JSON, nullable=True)  # what the checkout widget needs to open the session
    meta = Column(JSON, nullable=True)  # raw outcome details
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", back_populates="payment_attempts")
