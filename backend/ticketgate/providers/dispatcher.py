from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from ticketgate.providers.base import (
    TRANSACTION_ID_PATTERN,
    Receipt,
    ReceiptProvider,
    VerificationError,
    normalize_transaction_id,
)

log = logging.getLogger(__name__)

METHODS = ("telebirr", "cbe", "boa")
DEFAULT_METHOD = "telebirr"

# Literal id prefixes per rail. Longer prefixes are checked first.
PREFIX_METHODS = (
    ("BOA", "boa"),
    ("BAB", "boa"),
    ("FT", "cbe"),
)


class VerificationFailed(Exception):
    status_code = 400

    def __init__(self, message: str, *, method: str = "", transaction_id: str = "", reason: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.method = method
        self.transaction_id = transaction_id
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.reason,
            "message": self.message,
            "method": self.method or None,
            "transactionId": self.transaction_id or None,
        }


class VerificationTimedOut(VerificationFailed):
    status_code = 504

    def __init__(self, message: str = "Verification timed out. Nothing was charged; please try again.", **kwargs):
        kwargs.setdefault("reason", "timeout")
        super().__init__(message, **kwargs)


def infer_method(transaction_id: str) -> str:
    """Guess the payment rail from the literal shape of a transaction id."""
    tx = normalize_transaction_id(transaction_id)
    for prefix, method in PREFIX_METHODS:
        if tx.startswith(prefix):
            return method
    return DEFAULT_METHOD


_USER_MESSAGES = {
    "not_found": "We could not find this transaction at {label}. Please check the ID and try again.",
    "invalid_receipt": "The {label} receipt for this transaction is not a valid payment.",
    "unreachable": "{label} could not be reached right now. Please try again in a few minutes.",
    "unparsable": "We could not read the {label} receipt. Please try again or contact support.",
    "unavailable": "{label} verification is temporarily unavailable. Please contact support.",
}

_LABELS = {"telebirr": "Telebirr", "cbe": "CBE", "boa": "Bank of Abyssinia"}


class VerificationDispatcher:
    """Routes a transaction id to exactly one receipt provider."""

    def __init__(self, providers: Mapping[str, ReceiptProvider]):
        self.providers: Dict[str, ReceiptProvider] = dict(providers)

    def dispatch(self, transaction_id: str, method: Optional[str] = None) -> Receipt:
        tx = normalize_transaction_id(transaction_id)
        if not TRANSACTION_ID_PATTERN.match(tx):
            raise VerificationFailed(
                "Transaction ID must be 6-40 letters or digits.",
                transaction_id=tx,
                reason="invalid_transaction_id",
            )

        chosen = (method or "").strip().lower() or infer_method(tx)
        provider = self.providers.get(chosen)
        if provider is None:
            raise VerificationFailed(f"Unknown verification method: {chosen}", method=chosen, transaction_id=tx, reason="unknown_method")

        label = _LABELS.get(chosen, chosen.upper())
        try:
            receipt = provider.verify(tx)
        except VerificationError as e:
            log.warning("%s verification failed for %s: %s", chosen, tx, e)
            template = _USER_MESSAGES.get(e.reason, "Failed to verify {label} transaction.")
            raise VerificationFailed(template.format(label=label), method=chosen, transaction_id=tx, reason=e.reason) from e

        if not receipt.is_valid:
            raise VerificationFailed(
                _USER_MESSAGES["invalid_receipt"].format(label=label),
                method=chosen,
                transaction_id=tx,
                reason="invalid_receipt",
            )
        return receipt
