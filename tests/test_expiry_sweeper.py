import asyncio

import pytest

from cinebook.database.models import BookingStatus, HoldStatus, SeatHold
from cinebook.database.payment_models import PaymentAttempt, PaymentOutcome, PaymentStatus
from cinebook.services.expiry_sweeper import ExpirySweeper
from tests.conftest import HOLD_TTL, PAYMENT_WINDOW, book, seat_states


class FakeRedis:
    """Just enough of redis.asyncio for the leader lock."""

    def __init__(self):
        self.store = {}
        self.fail = False

    async def set(self, key, value, nx=False, px=None):
        if self.fail:
            raise ConnectionError("redis down")
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def eval(self, script, numkeys, key, owner):
        if self.store.get(key) == owner:
            del self.store[key]
            return 1
        return 0


@pytest.fixture
def sweeper(services):
    return ExpirySweeper(services.reservations, services.bookings, interval_seconds=0.01)


def test_sweep_expires_lapsed_holds(services, screening, clock, sweeper, session_factory):
    holds = services.reservations.hold(screening, ["A1", "A2"], "tok-1")
    clock.advance(HOLD_TTL + 1)

    stats = sweeper.sweep_once()

    assert stats["holds_expired"] == 2
    assert stats["errors"] == 0
    db = session_factory()
    try:
        statuses = {h.status for h in db.query(SeatHold).filter(SeatHold.id.in_([h.id for h in holds]))}
    finally:
        db.close()
    assert statuses == {HoldStatus.EXPIRED}
    assert seat_states(services)["A1"] == "AVAILABLE"


def test_sweep_leaves_renewed_holds(services, screening, clock, sweeper):
    holds = services.reservations.hold(screening, ["A1"], "tok-1")
    clock.advance(HOLD_TTL - 10)
    services.reservations.renew([h.id for h in holds], "tok-1")
    clock.advance(20)

    assert sweeper.sweep_once()["holds_expired"] == 0
    assert seat_states(services)["A1"] == "HELD"


def test_sweep_expires_stale_drafts(services, screening, clock, sweeper):
    booking = book(services, ["A1", "A2"])
    clock.advance(HOLD_TTL + 1)

    stats = sweeper.sweep_once()

    assert stats["drafts_expired"] == 1
    assert services.bookings.get_booking(booking.id).status == BookingStatus.EXPIRED
    assert seat_states(services)["A2"] == "AVAILABLE"


def test_sweep_expires_unpaid_bookings(services, screening, clock, sweeper, session_factory):
    booking = book(services, ["A1"])
    handle = services.bookings.begin_payment(booking.id)

    clock.advance(PAYMENT_WINDOW - 1)
    assert sweeper.sweep_once()["payments_expired"] == 0

    clock.advance(2)
    assert sweeper.sweep_once()["payments_expired"] == 1
    assert services.bookings.get_booking(booking.id).status == BookingStatus.EXPIRED
    assert seat_states(services)["A1"] == "AVAILABLE"
    db = session_factory()
    try:
        attempt = db.query(PaymentAttempt).filter(PaymentAttempt.gateway_reference == handle.gateway_reference).one()
    finally:
        db.close()
    assert attempt.status == PaymentStatus.EXPIRED


def test_sweep_skips_confirmed_bookings(services, screening, clock, sweeper):
    booking = book(services, ["A1"])
    handle = services.bookings.begin_payment(booking.id)
    services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.SUCCEEDED)
    clock.advance(PAYMENT_WINDOW + HOLD_TTL)

    stats = sweeper.sweep_once()

    assert stats == {"holds_expired": 0, "drafts_expired": 0, "payments_expired": 0, "errors": 0}
    assert services.bookings.get_booking(booking.id).status == BookingStatus.CONFIRMED


def test_sweep_continues_after_item_error(services, screening, clock, sweeper, monkeypatch):
    services.reservations.hold(screening, ["A1", "A2", "A3"], "tok-1")
    clock.advance(HOLD_TTL + 1)
    original = services.reservations.expire_hold
    calls = []

    def flaky(hold_id):
        calls.append(hold_id)
        if len(calls) == 1:
            raise RuntimeError("database hiccup")
        return original(hold_id)

    monkeypatch.setattr(services.reservations, "expire_hold", flaky)

    stats = sweeper.sweep_once()

    assert stats["errors"] == 1
    assert stats["holds_expired"] == 2
    assert len(calls) == 3


def test_leader_lock_skips_cycle_when_held_elsewhere(services, screening, clock):
    redis = FakeRedis()
    one = ExpirySweeper(services.reservations, services.bookings, redis=redis)
    other = ExpirySweeper(services.reservations, services.bookings, redis=redis)
    services.reservations.hold(screening, ["A1"], "tok-1")
    clock.advance(HOLD_TTL + 1)

    redis.store[other.lock_key] = other.owner
    assert asyncio.run(one.run_cycle()) is None
    assert seat_states(services)["A1"] == "AVAILABLE"  # lapsed, but not swept yet

    del redis.store[other.lock_key]
    stats = asyncio.run(one.run_cycle())
    assert stats["holds_expired"] == 1
    assert one.lock_key not in redis.store


def test_sweeps_without_lock_when_redis_fails(services, screening, clock):
    redis = FakeRedis()
    redis.fail = True
    sweeper = ExpirySweeper(services.reservations, services.bookings, redis=redis)
    services.reservations.hold(screening, ["A1"], "tok-1")
    clock.advance(HOLD_TTL + 1)

    stats = asyncio.run(sweeper.run_cycle())

    assert stats["holds_expired"] == 1


def test_background_loop_starts_and_stops(services, screening, clock):
    sweeper = ExpirySweeper(services.reservations, services.bookings, interval_seconds=0.01)
    services.reservations.hold(screening, ["A1"], "tok-1")
    clock.advance(HOLD_TTL + 1)

    async def run():
        sweeper.start()
        for _ in range(200):
            await asyncio.sleep(0.01)
            if not services.reservations.expired_hold_ids():
                break
        await sweeper.stop()

    asyncio.run(run())
    assert services.reservations.expired_hold_ids() == []
