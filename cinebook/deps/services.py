# cinebook/deps/services.py
"""
Service wiring and FastAPI dependencies.

The app keeps one set of services on app.state; routes receive them through
Depends so tests can build an app around their own database and gateway.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from cinebook.core.config import settings
from cinebook.database.database import SessionFactory
from cinebook.services.booking_service import BookingOrchestrator
from cinebook.services.catalog import InventoryCatalog
from cinebook.services.payment_gateway import build_gateway
from cinebook.services.payment_service import PaymentReconciliationAdapter
from cinebook.services.reservation_service import ReservationManager
from cinebook.utils import utcnow


@dataclass
class Services:
    session_factory: SessionFactory
    catalog: InventoryCatalog
    reservations: ReservationManager
    payments: PaymentReconciliationAdapter
    bookings: BookingOrchestrator


def build_services(
    session_factory: SessionFactory,
    gateway=None,
    config=settings,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    catalog = InventoryCatalog(session_factory)
    reservations = ReservationManager(
        session_factory,
        catalog=catalog,
        hold_ttl_seconds=config.HOLD_TTL_SECONDS,
        max_seats_per_holder=config.MAX_SEATS_PER_HOLDER,
        clock=clock,
    )
    payments = PaymentReconciliationAdapter(
        session_factory,
        gateway if gateway is not None else build_gateway(config),
        key_secret=config.RAZORPAY_KEY_SECRET,
        webhook_secret=config.PAYMENTS_WEBHOOK_SECRET,
        clock=clock,
    )
    bookings = BookingOrchestrator(
        session_factory,
        reservations,
        payments,
        catalog=catalog,
        payment_window_seconds=config.PAYMENT_WINDOW_SECONDS,
        currency=config.CURRENCY,
        clock=clock,
    )
    payments.attach(bookings)
    return Services(session_factory, catalog, reservations, payments, bookings)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_reservations(request: Request) -> ReservationManager:
    return get_services(request).reservations


def get_bookings(request: Request) -> BookingOrchestrator:
    return get_services(request).bookings


def get_payments(request: Request) -> PaymentReconciliationAdapter:
    return get_services(request).payments


def get_db(request: Request):
    db = get_services(request).session_factory()
    try:
        yield db
    finally:
        db.close()


async def get_redis_optional(request: Request) -> Optional[object]:
    return getattr(request.app.state, "redis", None)
