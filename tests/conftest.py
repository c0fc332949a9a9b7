import threading
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from cinebook.database import models  # noqa: F401
from cinebook.database.database import Base, build_engine, build_session_factory
from cinebook.deps.services import build_services
from cinebook.main import create_app
from cinebook.services.payment_gateway import GatewayError, GatewaySession

SCREENING_ID = "scr-1"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"
HOLD_TTL = 600
PAYMENT_WINDOW = 900


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeGateway:
    name = "fallback"

    def __init__(self):
        self.calls = 0
        self.fail = False
        self._lock = threading.Lock()

    def create_session(self, booking_id, amount, currency, notes):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.fail:
            raise GatewayError("connection refused")
        reference = f"ref-{n}"
        return GatewaySession(
            reference=reference,
            client_payload={"order_id": reference, "amount": amount, "currency": currency},
        )

    def health(self):
        return {"gateway": self.name, "status": "healthy"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'cinebook_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(session_factory, gateway, clock):
    config = SimpleNamespace(
        HOLD_TTL_SECONDS=HOLD_TTL,
        MAX_SEATS_PER_HOLDER=10,
        PAYMENT_WINDOW_SECONDS=PAYMENT_WINDOW,
        CURRENCY="INR",
        RAZORPAY_KEY_SECRET=KEY_SECRET,
        PAYMENTS_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PAYMENT_GATEWAY="fallback",
    )
    return build_services(session_factory, gateway=gateway, config=config, clock=clock)


@pytest.fixture
def screening(services):
    """Rows A (standard, 250) and B (premium, 400), six seats each."""
    seats = [
        {"row_label": "A", "seat_number": n, "category": "standard", "unit_price": 250} for n in range(1, 7)
    ] + [
        {"row_label": "B", "seat_number": n, "category": "premium", "unit_price": 400} for n in range(1, 7)
    ]
    services.catalog.register_screening(SCREENING_ID, seats)
    return SCREENING_ID


@pytest.fixture
def client(services, screening):
    app = create_app(services=services, start_sweeper=False, use_redis=False)
    with TestClient(app) as test_client:
        yield test_client


def seat_states(services, screening_id=SCREENING_ID, holder_token=None):
    return {s["seat_id"]: s["status"].value for s in services.reservations.seat_map(screening_id, holder_token)}


def book(services, seat_ids, token="tok-1", user_id="user-1", screening_id=SCREENING_ID):
    """Hold seats and turn them into a DRAFT booking."""
    services.reservations.hold(screening_id, seat_ids, token)
    return services.bookings.create_booking(user_id, screening_id, seat_ids, token)
