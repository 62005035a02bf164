import base64
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from ticketgate.models import AuditLog
from ticketgate.services.tickets import derive_ticket_status
from ticketgate.utils.tickets import (
    InvalidTicketSignature,
    TicketAlreadyUsed,
    TicketExpired,
    TicketNotFound,
    TicketSigner,
    normalize_base_url,
)

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


@pytest.fixture()
def signer():
    return TicketSigner("unit-test-secret", "https://tickets.example.com")


def test_round_trip(signer):
    ref = signer.issue("INV-0001", "FT2209AB12", issued_ms=1790000000000, nonce="abc123")
    signed = signer.unpack(ref)

    assert signed.invoice_id == "INV-0001"
    assert signed.transaction_id == "FT2209AB12"
    assert signed.issued_ms == 1790000000000
    assert signed.nonce == "abc123"
    assert "=" not in ref
    assert signer.url_for(ref) == f"https://tickets.example.com/ticket/{ref}"


def test_references_are_unique_per_issue(signer):
    assert signer.issue("INV-0001", "FT2209AB12") != signer.issue("INV-0001", "FT2209AB12")


def test_every_single_character_change_is_rejected(signer):
    ref = signer.issue("INV-0001", "FT2209AB12")
    for i, ch in enumerate(ref):
        replacement = "A" if ch != "A" else "B"
        tampered = ref[:i] + replacement + ref[i + 1:]
        with pytest.raises(InvalidTicketSignature):
            signer.unpack(tampered)


def test_other_secret_is_rejected(signer):
    ref = TicketSigner("another-secret").issue("INV-0001", "FT2209AB12")
    with pytest.raises(InvalidTicketSignature) as exc:
        signer.unpack(ref)
    assert exc.value.code == "invalid_signature"


def test_forged_payload_is_rejected(signer):
    forged = base64.urlsafe_b64encode(b"INV-0001:FT2209AB12:1790000000000:n:" + b"0" * 64).decode().rstrip("=")
    with pytest.raises(InvalidTicketSignature):
        signer.unpack(forged)


@pytest.mark.parametrize("ref", ["", "not a ref", "abc$", "QUJD", "%%%"])
def test_malformed_references(signer, ref):
    with pytest.raises(InvalidTicketSignature):
        signer.unpack(ref)


def test_signer_refuses_unsafe_fields(signer):
    with pytest.raises(ValueError):
        signer.issue("INV:1", "FT2209AB12")
    with pytest.raises(ValueError):
        TicketSigner("")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://t.example.com/", "https://t.example.com"),
        ("https://t.example.com/ticket", "https://t.example.com"),
        ("https://t.example.com/ticket/", "https://t.example.com"),
    ],
)
def test_normalize_base_url(raw, expected):
    assert normalize_base_url(raw) == expected


def test_status_derivation():
    now = datetime(2026, 9, 22, 12, 0)
    past = now - timedelta(hours=1)
    future = now + timedelta(hours=1)
    fresh = SimpleNamespace(checked_in=False)
    used = SimpleNamespace(checked_in=True)

    assert derive_ticket_status(future, fresh, now) == "valid"
    assert derive_ticket_status(None, None, now) == "valid"
    assert derive_ticket_status(past, fresh, now) == "expired"
    assert derive_ticket_status(future, used, now) == "used"
    assert derive_ticket_status(past, used, now) == "used"


def _paid_ticket(services, seed, starts_in=timedelta(days=7), with_registration=True):
    user = seed.user()
    event = seed.event(starts_in=starts_in)
    reg = seed.registration(user, event, status="confirmed") if with_registration else None
    inv = seed.invoice(user, 500, event=event, registration=reg)
    services.store.commit_payment(inv, "FT2209AB12", {}, paid_at=datetime.utcnow(), method="cbe")
    return services.tickets.issue(inv), inv, reg


def test_issue_requires_paid_invoice(services, seed):
    user = seed.user()
    inv = seed.invoice(user, 500)
    with pytest.raises(ValueError):
        services.tickets.issue(inv)


def test_verify_valid_ticket(services, seed):
    issued, inv, reg = _paid_ticket(services, seed)
    view = services.tickets.verify(issued.reference)

    assert view.status == "valid"
    assert view.ticket.invoice_id == inv.invoice_id
    assert view.ticket.event_name == "Trail Ride"
    assert view.registration.id == reg.id
    assert view.to_dict()["ticket"]["transactionId"] == "FT2209AB12"


def test_tampered_ticket_is_audited(services, seed):
    issued, _, _ = _paid_ticket(services, seed)
    tampered = issued.reference[:-1] + ("A" if issued.reference[-1] != "A" else "B")
    with pytest.raises(InvalidTicketSignature):
        services.tickets.verify(tampered)
    assert AuditLog.query.filter_by(action="ticket_tamper").count() == 1


def test_signed_reference_without_payment_is_not_found(services, seed):
    ref = services.tickets.signer.issue("INV-9999", "FT0000000000")
    with pytest.raises(TicketNotFound):
        services.tickets.verify(ref)


def test_check_in_sequence(services, seed):
    issued, _, reg = _paid_ticket(services, seed)

    view, at = services.tickets.check_in(issued.reference)
    assert view.status == "used"
    assert view.registration.checked_in_at == at

    with pytest.raises(TicketAlreadyUsed) as exc:
        services.tickets.check_in(issued.reference)
    assert exc.value.status_code == 409
    assert exc.value.context["usedAt"] == at.isoformat()
    assert services.tickets.verify(issued.reference).status == "used"


def test_expired_ticket_cannot_check_in(services, seed):
    issued, _, reg = _paid_ticket(services, seed, starts_in=-timedelta(hours=2))
    assert services.tickets.verify(issued.reference).status == "expired"
    with pytest.raises(TicketExpired):
        services.tickets.check_in(issued.reference)
    assert services.store.get_registration(reg.id).checked_in is False


def test_used_wins_over_expired(services, seed):
    issued, _, _ = _paid_ticket(services, seed)
    services.tickets.check_in(issued.reference)
    services.tickets.clock = lambda: datetime.utcnow() + timedelta(days=30)

    assert services.tickets.verify(issued.reference).status == "used"
    with pytest.raises(TicketAlreadyUsed):
        services.tickets.check_in(issued.reference)


def test_check_in_without_registration(services, seed):
    issued, _, _ = _paid_ticket(services, seed, with_registration=False)
    with pytest.raises(TicketNotFound):
        services.tickets.check_in(issued.reference)


def test_concurrent_check_in_loses_conditional_update(services, seed, monkeypatch):
    issued, _, reg = _paid_ticket(services, seed)
    monkeypatch.setattr(services.store, "check_in", lambda registration_id, at: False)
    with pytest.raises(TicketAlreadyUsed):
        services.tickets.check_in(issued.reference)


def test_store_check_in_flips_once(services, seed):
    _, _, reg = _paid_ticket(services, seed)
    first_at = datetime(2026, 10, 3, 8, 30)

    assert services.store.check_in(reg.id, first_at) is True
    assert services.store.check_in(reg.id, first_at + timedelta(minutes=1)) is False

    stored = services.store.get_registration(reg.id)
    assert stored.checked_in is True
    assert stored.checked_in_at == first_at


def test_second_gate_loses_check_in_race(services, seed, monkeypatch):
    issued, _, reg = _paid_ticket(services, seed)
    store = services.store
    real_check_in = store.check_in
    other_gate = []

    # Another gate scans the same ticket after this one has verified it
    def check_in_after_other_gate(registration_id, at):
        if not other_gate:
            other_gate.append(None)
            other_gate[0] = services.tickets.check_in(issued.reference)
        return real_check_in(registration_id, at)

    monkeypatch.setattr(store, "check_in", check_in_after_other_gate)
    with pytest.raises(TicketAlreadyUsed) as exc:
        services.tickets.check_in(issued.reference)

    view, at = other_gate[0]
    assert view.status == "used"
    assert exc.value.context["usedAt"] == at.isoformat()
    assert store.get_registration(reg.id).checked_in_at == at
    assert AuditLog.query.filter_by(action="ticket_checkin").count() == 1


def test_manual_check_in(services, seed):
    _, _, reg = _paid_ticket(services, seed)
    registration, at = services.tickets.check_in_registration(reg.id)
    assert registration.checked_in
    with pytest.raises(TicketAlreadyUsed):
        services.tickets.check_in_registration(reg.id)
    with pytest.raises(TicketNotFound):
        services.tickets.check_in_registration(999)
