import hashlib
import hmac
import json
from decimal import Decimal

from tests.conftest import HOLD_TTL, KEY_SECRET, SCREENING_ID, WEBHOOK_SECRET


def _hold(client, seat_ids, token="tok-1"):
    return client.post(f"/api/screenings/{SCREENING_ID}/holds", json={"seat_ids": seat_ids, "holder_token": token})


def _draft(client, seat_ids, token="tok-1", user_id="user-1"):
    assert _hold(client, seat_ids, token).status_code == 201
    response = client.post(
        "/api/bookings",
        json={"user_id": user_id, "screening_id": SCREENING_ID, "seat_ids": seat_ids, "holder_token": token},
    )
    assert response.status_code == 201
    return response.json()


def test_seat_map(client):
    _hold(client, ["A1"])

    response = client.get(f"/api/screenings/{SCREENING_ID}/seats", params={"holder_token": "tok-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["available_count"] == 11
    seats = {s["seat_id"]: s for s in body["seats"]}
    assert seats["A1"]["status"] == "HELD"
    assert seats["A1"]["held_by_you"] is True
    assert seats["B2"]["category"] == "premium"
    assert Decimal(seats["B2"]["unit_price"]) == Decimal("400")


def test_booking_flow_with_fallback_outcome(client, gateway):
    booking = _draft(client, ["A1", "B1"])
    assert booking["status"] == "DRAFT"
    assert booking["total_price"] == "650.00"

    session = client.post(f"/api/bookings/{booking['id']}/payment")
    assert session.status_code == 200
    reference = session.json()["gateway_reference"]
    assert session.json()["amount"] == 65000

    verify = client.post("/api/payments/verify", json={"gateway_reference": reference, "outcome": "SUCCEEDED"})
    assert verify.status_code == 200
    assert verify.json()["applied"] is True

    final = client.get(f"/api/bookings/{booking['id']}")
    assert final.json()["status"] == "CONFIRMED"
    assert final.json()["message"] == "Booking confirmed"
    assert [s["seat_id"] for s in final.json()["seats"]] == ["A1", "B1"]

    mine = client.get("/api/users/user-1/bookings")
    assert [b["id"] for b in mine.json()] == [booking["id"]]


def test_hold_conflict(client):
    _hold(client, ["A2"], token="tok-2")

    response = _hold(client, ["A1", "A2"])

    assert response.status_code == 409
    assert response.json()["code"] == "seat_unavailable"
    assert response.json()["seat_ids"] == ["A2"]


def test_hold_limit(client):
    response = _hold(client, [f"A{n}" for n in range(1, 7)] + [f"B{n}" for n in range(1, 6)])

    assert response.status_code == 422
    assert response.json()["code"] == "hold_limit_exceeded"


def test_unknown_seat(client):
    assert _hold(client, ["Q1"]).status_code == 404


def test_renew_and_release(client, clock):
    holds = _hold(client, ["A1", "A2"]).json()["holds"]
    hold_ids = [h["id"] for h in holds]
    clock.advance(HOLD_TTL - 1)

    renewed = client.post("/api/holds/renew", json={"hold_ids": hold_ids, "holder_token": "tok-1"})
    assert renewed.status_code == 200

    released = client.post("/api/holds/release", json={"hold_ids": hold_ids, "holder_token": "tok-1"})
    assert sorted(released.json()["released_seat_ids"]) == ["A1", "A2"]
    active = client.get(f"/api/screenings/{SCREENING_ID}/holds", params={"holder_token": "tok-1"})
    assert active.json()["holds"] == []


def test_renew_expired_hold(client, clock):
    hold_ids = [h["id"] for h in _hold(client, ["A1"]).json()["holds"]]
    clock.advance(HOLD_TTL + 1)

    response = client.post("/api/holds/renew", json={"hold_ids": hold_ids, "holder_token": "tok-1"})

    assert response.status_code == 410
    assert response.json()["code"] == "hold_expired"


def test_booking_not_found(client):
    assert client.get("/api/bookings/nope").status_code == 404
    assert client.post("/api/bookings/nope/payment").status_code == 404


def test_gateway_down(client, gateway):
    booking = _draft(client, ["A1"])
    gateway.fail = True

    response = client.post(f"/api/bookings/{booking['id']}/payment")

    assert response.status_code == 503
    assert client.get(f"/api/bookings/{booking['id']}").json()["status"] == "DRAFT"


def test_payment_on_confirmed_booking_conflicts(client):
    booking = _draft(client, ["A1"])
    reference = client.post(f"/api/bookings/{booking['id']}/payment").json()["gateway_reference"]
    client.post("/api/payments/verify", json={"gateway_reference": reference, "outcome": "SUCCEEDED"})

    response = client.post(f"/api/bookings/{booking['id']}/payment")

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state_transition"


def test_signed_callback(client):
    booking = _draft(client, ["A1"])
    reference = client.post(f"/api/bookings/{booking['id']}/payment").json()["gateway_reference"]
    signature = hmac.new(KEY_SECRET.encode(), f"{reference}|pay_1".encode(), hashlib.sha256).hexdigest()

    bad = client.post(
        "/api/payments/verify",
        json={"razorpay_order_id": reference, "razorpay_payment_id": "pay_1", "razorpay_signature": "0" * 64},
    )
    assert bad.status_code == 400

    good = client.post(
        "/api/payments/verify",
        json={"razorpay_order_id": reference, "razorpay_payment_id": "pay_1", "razorpay_signature": signature},
    )
    assert good.status_code == 200
    assert good.json()["booking_status"] == "CONFIRMED"


def test_webhook_failure_then_duplicate(client):
    booking = _draft(client, ["A1"])
    reference = client.post(f"/api/bookings/{booking['id']}/payment").json()["gateway_reference"]
    body = json.dumps({
        "event": "payment.failed",
        "payload": {"payment": {"entity": {"id": "pay_2", "order_id": reference}}},
    }).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    headers = {"X-Razorpay-Signature": signature, "Content-Type": "application/json"}

    first = client.post("/api/payments/webhook", content=body, headers=headers)
    second = client.post("/api/payments/webhook", content=body, headers=headers)

    assert first.json()["applied"] is True
    assert second.json()["applied"] is False
    assert client.get(f"/api/bookings/{booking['id']}").json()["status"] == "FAILED"
    # seat went back to inventory
    assert _hold(client, ["A1"], token="tok-2").status_code == 201


def test_webhook_rejects_bad_signature(client):
    response = client.post(
        "/api/payments/webhook",
        content=b'{"event": "payment.captured"}',
        headers={"X-Razorpay-Signature": "bad"},
    )
    assert response.status_code == 400


def test_health(client):
    assert client.get("/api/health/db").json() == {"status": "healthy"}
    assert client.get("/api/health/redis").json()["status"] == "disabled"
    assert client.get("/api/payments/health").json()["status"] == "healthy"


def test_webhook_rejects_malformed_signed_body(client):
    body = b'{"event": "payment.captured", "payload": null}'
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

    response = client.post("/api/payments/webhook", content=body, headers={"X-Razorpay-Signature": signature})

    assert response.status_code == 400
