import hashlib
import hmac
import json
import threading

import pytest

from cinebook.core.errors import BookingNotFound, InvalidSignature
from cinebook.database.models import BookingStatus
from cinebook.database.payment_models import PaymentAttempt, PaymentOutcome, PaymentStatus
from tests.conftest import KEY_SECRET, PAYMENT_WINDOW, WEBHOOK_SECRET, book, seat_states


def _attempt(session_factory, reference):
    db = session_factory()
    try:
        return db.query(PaymentAttempt).filter(PaymentAttempt.gateway_reference == reference).one()
    finally:
        db.close()


@pytest.fixture
def awaiting(services, screening):
    booking = book(services, ["A1", "A2"])
    handle = services.bookings.begin_payment(booking.id)
    return booking, handle


def test_success_outcome_confirms_booking(services, awaiting, session_factory):
    booking, handle = awaiting

    result = services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.SUCCEEDED, payment_id="pay_1")

    assert result["applied"] is True
    assert result["booking_status"] == BookingStatus.CONFIRMED
    attempt = _attempt(session_factory, handle.gateway_reference)
    assert attempt.status == PaymentStatus.SUCCEEDED
    assert attempt.gateway_payment_id == "pay_1"


def test_duplicate_outcome_is_a_noop(services, awaiting):
    booking, handle = awaiting
    services.payments.on_outcome(handle.gateway_reference, "SUCCEEDED")

    again = services.payments.on_outcome(handle.gateway_reference, "SUCCEEDED")
    contrary = services.payments.on_outcome(handle.gateway_reference, "FAILED")

    assert again["applied"] is False
    assert contrary["applied"] is False
    assert services.bookings.get_booking(booking.id).status == BookingStatus.CONFIRMED
    assert seat_states(services)["A1"] == "BOOKED"


def test_failed_outcome_releases_seats(services, awaiting):
    booking, handle = awaiting

    result = services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.FAILED)

    assert result["booking_status"] == BookingStatus.FAILED
    assert result["attempt_status"] == PaymentStatus.FAILED
    assert seat_states(services)["A2"] == "AVAILABLE"


def test_unknown_reference(services, screening):
    with pytest.raises(BookingNotFound):
        services.payments.on_outcome("order_unknown", PaymentOutcome.SUCCEEDED)


def test_success_after_expiry_is_orphaned(services, awaiting, clock, session_factory):
    booking, handle = awaiting
    clock.advance(PAYMENT_WINDOW + 1)
    assert services.bookings.expire_booking(booking.id) is True

    result = services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.SUCCEEDED, payment_id="pay_late")

    assert result["applied"] is False
    assert result["booking_status"] == BookingStatus.EXPIRED
    assert _attempt(session_factory, handle.gateway_reference).status == PaymentStatus.ORPHANED
    assert seat_states(services)["A1"] == "AVAILABLE"


def test_success_on_superseded_session_is_orphaned(services, awaiting, session_factory):
    booking, first = awaiting
    services.bookings.begin_payment(booking.id, restart=True)

    result = services.payments.on_outcome(first.gateway_reference, PaymentOutcome.SUCCEEDED)

    assert result["applied"] is False
    assert _attempt(session_factory, first.gateway_reference).status == PaymentStatus.ORPHANED
    assert services.bookings.get_booking(booking.id).status == BookingStatus.AWAITING_PAYMENT


def test_success_after_failure_is_orphaned(services, awaiting, session_factory):
    booking, handle = awaiting
    services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.FAILED, payment_id="pay_1")

    result = services.payments.on_outcome(handle.gateway_reference, PaymentOutcome.SUCCEEDED, payment_id="pay_2")

    assert result["applied"] is False
    assert result["booking_status"] == BookingStatus.FAILED
    assert result["attempt_status"] == PaymentStatus.ORPHANED
    attempt = _attempt(session_factory, handle.gateway_reference)
    assert attempt.status == PaymentStatus.ORPHANED
    assert attempt.gateway_payment_id == "pay_2"
    # booking stays failed and its seats stay free
    assert seat_states(services)["A1"] == "AVAILABLE"


def test_racing_outcomes_finalize_once(services, awaiting):
    booking, handle = awaiting
    barrier = threading.Barrier(2)
    results = []

    def deliver(outcome):
        barrier.wait()
        results.append(services.payments.on_outcome(handle.gateway_reference, outcome))

    threads = [
        threading.Thread(target=deliver, args=(PaymentOutcome.SUCCEEDED,)),
        threading.Thread(target=deliver, args=(PaymentOutcome.FAILED,)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r["applied"] for r in results) == [False, True]
    final = services.bookings.get_booking(booking.id).status
    assert final in (BookingStatus.CONFIRMED, BookingStatus.FAILED)
    expected_seat = "BOOKED" if final == BookingStatus.CONFIRMED else "AVAILABLE"
    assert seat_states(services)["A1"] == expected_seat


def test_callback_signature(services):
    signature = hmac.new(KEY_SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()

    services.payments.verify_callback_signature("order_1", "pay_1", signature)
    with pytest.raises(InvalidSignature):
        services.payments.verify_callback_signature("order_1", "pay_2", signature)


def test_webhook_signature_and_parsing(services):
    body = json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_9", "order_id": "order_9"}}},
    }).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

    services.payments.verify_webhook_signature(body, signature)
    order_id, outcome, payment_id, _ = services.payments.parse_webhook(body)

    assert (order_id, outcome, payment_id) == ("order_9", PaymentOutcome.SUCCEEDED, "pay_9")
    with pytest.raises(InvalidSignature):
        services.payments.verify_webhook_signature(body + b" ", signature)
    with pytest.raises(InvalidSignature):
        services.payments.verify_webhook_signature(body, None)


def test_webhook_ignores_other_events(services):
    body = json.dumps({"event": "refund.created", "payload": {}}).encode()
    assert services.payments.parse_webhook(body) is None


@pytest.mark.parametrize(
    "body",
    [
        b"[1, 2]",
        b'{"event": "payment.captured", "payload": null}',
        b'{"event": "payment.captured", "payload": {"payment": null, "order": "x"}}',
        b'{"event": "payment.failed", "payload": {"payment": {"entity": [1]}}}',
    ],
)
def test_malformed_webhook_body_is_a_value_error(services, body):
    with pytest.raises(ValueError):
        services.payments.parse_webhook(body)
