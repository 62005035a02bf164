from datetime import timedelta

from ticketgate.extensions import db
from ticketgate.models import EventRegistration, Invoice


def _reference(url):
    return url.rsplit("/", 1)[-1]


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.get_json()["db"] == "ok"


def test_detect_method(client):
    res = client.get("/api/payments/detect-method/ft2209ab12")
    assert res.get_json() == {"ok": True, "transactionId": "FT2209AB12", "method": "cbe"}


def test_verify_validation_errors(client):
    res = client.post("/api/payments/verify", json={"userId": 1})
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"

    res = client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": "abc"})
    assert res.status_code == 400

    res = client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": 1, "method": "paypal"})
    assert res.status_code == 400


def test_verify_rejects_wrongly_typed_fields(client, providers):
    bodies = [
        {"transactionId": "FT2209AB12", "userId": 1, "method": 5},
        {"transactionId": "FT2209AB12", "userId": 1, "eventHint": 5},
        {"transactionId": ["FT2209AB12"], "userId": 1},
        {"transactionId": "FT2209AB12", "userId": True},
        ["FT2209AB12", 1],
    ]
    for body in bodies:
        res = client.post("/api/payments/verify", json=body)
        assert res.status_code == 400, body
        assert res.get_json()["error"] == "validation_error"
    assert providers["cbe"].calls == []


def test_payment_to_check_in_flow(client, seed, providers, notifier):
    user = seed.user()
    event = seed.event(name="Trail Ride")
    reg = seed.registration(user, event)
    seed.invoice(user, 500, event=event)
    providers["cbe"].add("FT2209AB12", 500)

    res = client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": user.id})
    body = res.get_json()
    assert res.status_code == 200
    assert body["success"] is True
    assert body["duplicate"] is False
    assert body["invoice"]["status"] == "paid"
    assert body["invoice"]["paymentMethod"] == "cbe"
    assert body["registrationConfirmed"] is True
    assert body["ticketIssued"] is True
    assert providers["cbe"].calls == ["FT2209AB12"]
    assert providers["telebirr"].calls == []
    assert db.session.get(EventRegistration, reg.id).status == "confirmed"
    assert len(notifier.sent) == 1

    ref = _reference(body["ticketUrl"])

    res = client.get(f"/ticket/{ref}")
    assert res.status_code == 200
    assert res.get_json()["status"] == "valid"
    assert res.get_json()["ticket"]["eventName"] == "Trail Ride"

    res = client.get(f"/ticket/{ref}/status")
    assert res.get_json()["data"]["status"] == "valid"

    res = client.get(f"/ticket/{ref}/qr")
    assert res.status_code == 200
    assert res.mimetype == "image/png"

    res = client.post(f"/ticket/{ref}/use")
    assert res.status_code == 200
    assert res.get_json()["success"] is True
    assert res.get_json()["checkedInAt"]

    res = client.get(f"/ticket/{ref}")
    assert res.get_json()["status"] == "used"

    res = client.post(f"/ticket/{ref}/use")
    assert res.status_code == 409
    assert res.get_json()["error"] == "already_used"


def test_duplicate_submission_returns_ticket_again(client, seed, providers):
    user = seed.user()
    seed.invoice(user, 500)
    providers["cbe"].add("FT2209AB12", 500)

    client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": user.id})
    res = client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": user.id})

    body = res.get_json()
    assert res.status_code == 200
    assert body["duplicate"] is True
    assert body["message"].startswith("This payment was already verified")
    assert body["ticketUrl"]


def test_transaction_reused_by_other_user(client, seed, providers):
    first = seed.user("First")
    second = seed.user("Second", chat_id="5550002")
    seed.invoice(first, 500)
    seed.invoice(second, 500)
    providers["cbe"].add("FT2209AB12", 500)

    client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": first.id})
    res = client.post("/api/payments/verify", json={"transactionId": "FT2209AB12", "userId": second.id})

    assert res.status_code == 409
    assert res.get_json()["error"] == "duplicate_transaction"
    assert Invoice.query.filter_by(user_id=second.id).one().status == "pending"


def test_provider_not_found_maps_to_400(client, seed):
    user = seed.user()
    seed.invoice(user, 500)
    res = client.post("/api/payments/verify", json={"transactionId": "CI12AB34CD", "userId": user.id})
    body = res.get_json()
    assert res.status_code == 400
    assert body["error"] == "not_found"
    assert body["method"] == "telebirr"


def test_no_matching_invoice_maps_to_404(client, seed, providers):
    user = seed.user()
    seed.invoice(user, 800)
    providers["telebirr"].add("CI12AB34CD", 500)
    res = client.post("/api/payments/verify", json={"transactionId": "CI12AB34CD", "userId": user.id, "method": "telebirr"})
    assert res.status_code == 404
    assert res.get_json()["error"] == "no_matching_invoice"


def test_expired_ticket_response(client, seed, providers):
    user = seed.user()
    event = seed.event(starts_in=-timedelta(hours=3))
    seed.registration(user, event)
    seed.invoice(user, 500, event=event)
    providers["boa"].add("BOA12345XYZ", 500)

    body = client.post("/api/payments/verify", json={"transactionId": "BOA12345XYZ", "userId": user.id}).get_json()
    ref = _reference(body["ticketUrl"])

    res = client.get(f"/ticket/{ref}")
    assert res.status_code == 410
    assert res.get_json()["error"] == "expired"
    assert res.get_json()["ticket"]["invoiceId"] == body["invoice"]["invoiceId"]

    res = client.post(f"/ticket/{ref}/use")
    assert res.status_code == 410


def test_tampered_and_unknown_tickets(client):
    res = client.get("/ticket/bm90LWEtdGlja2V0")
    assert res.status_code == 400
    assert res.get_json()["error"] == "invalid_signature"

    res = client.post("/ticket/bm90LWEtdGlja2V0/use")
    assert res.status_code == 400


def test_manual_check_in_route(client, seed):
    user = seed.user()
    event = seed.event()
    reg = seed.registration(user, event, status="confirmed")

    res = client.post(f"/ticket/checkin/{reg.id}")
    assert res.status_code == 200
    assert res.get_json()["registration"]["checked_in"] is True

    res = client.post(f"/ticket/checkin/{reg.id}")
    assert res.status_code == 409
