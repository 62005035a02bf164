import threading
from decimal import Decimal
from unittest.mock import Mock

import pytest

from ticketgate.providers import (
    ProviderUnavailable,
    Receipt,
    ReceiptNotFound,
    TransientProviderError,
    VerificationDispatcher,
    VerificationFailed,
    VerificationTimedOut,
    infer_method,
    normalize_transaction_id,
)
from ticketgate.services.payments import PaymentVerificationService


@pytest.mark.parametrize(
    "tx, method",
    [
        ("FT2209AB12", "cbe"),
        ("ft2209ab12", "cbe"),
        ("BOA12345XYZ", "boa"),
        ("BAB998877", "boa"),
        ("CI12AB34CD", "telebirr"),
        ("8HJ2K9ZZ", "telebirr"),
    ],
)
def test_infer_method(tx, method):
    assert infer_method(tx) == method


def test_normalize_transaction_id():
    assert normalize_transaction_id(" ft22 09ab12\n") == "FT2209AB12"


def _receipt(tx="FT2209AB12", amount="500", status="valid", method="cbe"):
    return Receipt(transaction_id=tx, sender_name="Abebe", amount=Decimal(amount), date="", status=status, method=method)


def _dispatcher(**providers):
    providers.setdefault("telebirr", Mock())
    providers.setdefault("cbe", Mock())
    providers.setdefault("boa", Mock())
    return VerificationDispatcher(providers)


def test_dispatch_routes_to_inferred_provider():
    cbe = Mock()
    cbe.verify.return_value = _receipt()
    dispatcher = _dispatcher(cbe=cbe)

    receipt = dispatcher.dispatch("ft2209ab12")

    cbe.verify.assert_called_once_with("FT2209AB12")
    dispatcher.providers["telebirr"].verify.assert_not_called()
    assert receipt.amount == Decimal("500")


def test_explicit_method_wins_over_prefix():
    telebirr = Mock()
    telebirr.verify.return_value = _receipt(method="telebirr")
    dispatcher = _dispatcher(telebirr=telebirr)
    dispatcher.dispatch("FT2209AB12", method="telebirr")
    telebirr.verify.assert_called_once_with("FT2209AB12")


@pytest.mark.parametrize("tx", ["", "AB12", "FT22-09", "X" * 41])
def test_rejects_malformed_transaction_id(tx):
    dispatcher = _dispatcher()
    with pytest.raises(VerificationFailed) as exc:
        dispatcher.dispatch(tx)
    assert exc.value.reason == "invalid_transaction_id"
    assert exc.value.status_code == 400


def test_unknown_method():
    with pytest.raises(VerificationFailed) as exc:
        _dispatcher().dispatch("FT2209AB12", method="paypal")
    assert exc.value.reason == "unknown_method"


@pytest.mark.parametrize(
    "error, reason",
    [
        (ReceiptNotFound("gone"), "not_found"),
        (TransientProviderError("down"), "unreachable"),
        (ProviderUnavailable("no pdftotext"), "unavailable"),
    ],
)
def test_provider_errors_become_verification_failures(error, reason):
    cbe = Mock()
    cbe.verify.side_effect = error
    with pytest.raises(VerificationFailed) as exc:
        _dispatcher(cbe=cbe).dispatch("FT2209AB12")
    assert exc.value.reason == reason
    assert exc.value.method == "cbe"
    assert "CBE" in exc.value.message
    body = exc.value.to_dict()
    assert body["success"] is False
    assert body["transactionId"] == "FT2209AB12"


def test_invalid_receipt_is_rejected():
    cbe = Mock()
    cbe.verify.return_value = _receipt(amount="0", status="invalid")
    with pytest.raises(VerificationFailed) as exc:
        _dispatcher(cbe=cbe).dispatch("FT2209AB12")
    assert exc.value.reason == "invalid_receipt"


def test_outer_timeout_raises_without_reconciling():
    release = threading.Event()
    cbe = Mock()

    def slow_verify(tx):
        release.wait(5)
        return _receipt()

    cbe.verify.side_effect = slow_verify
    engine = Mock()
    service = PaymentVerificationService(_dispatcher(cbe=cbe), engine, timeout=0.05)
    try:
        with pytest.raises(VerificationTimedOut) as exc:
            service.verify_payment("FT2209AB12", 1)
    finally:
        release.set()

    assert exc.value.status_code == 504
    assert exc.value.reason == "timeout"
    engine.reconcile.assert_not_called()


def test_verify_payment_passes_receipt_to_engine():
    cbe = Mock()
    cbe.verify.return_value = _receipt()
    engine = Mock()
    service = PaymentVerificationService(_dispatcher(cbe=cbe), engine, timeout=None)

    service.verify_payment("FT2209AB12", "7", event_hint="Trail Ride")

    engine.reconcile.assert_called_once()
    receipt, user_id, method, hint = engine.reconcile.call_args[0]
    assert receipt.transaction_id == "FT2209AB12"
    assert (user_id, method, hint) == (7, "cbe", "Trail Ride")
