from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

import requests

from ticketgate.providers.document import ReceiptDocument, parse_amount

log = logging.getLogger(__name__)

# Transaction ids as every rail issues them; also the ticket-safe alphabet
TRANSACTION_ID_PATTERN = re.compile(r"^[A-Z0-9]{6,40}$")


def normalize_transaction_id(raw: str) -> str:
    return re.sub(r"\s+", "", str(raw or "")).upper()


BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass(frozen=True)
class Receipt:
    transaction_id: str
    sender_name: str
    amount: Decimal
    date: str
    status: str = "valid"  # valid | invalid
    receiver_name: Optional[str] = None
    method: str = ""

    @property
    def is_valid(self) -> bool:
        return self.status == "valid"

    def to_dict(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "senderName": self.sender_name,
            "receiverName": self.receiver_name,
            "amount": str(self.amount),
            "date": self.date,
            "status": self.status,
            "method": self.method,
        }


class VerificationError(Exception):
    """Raised by a provider when a receipt cannot be confirmed."""

    retryable = False
    reason = "verification_error"


class TransientProviderError(VerificationError):
    """Timeouts, connection failures, 5xx and truncated documents."""

    retryable = True
    reason = "unreachable"


class ReceiptFormatError(VerificationError):
    """The institution answered but the receipt fields could not be located."""

    retryable = True
    reason = "unparsable"


class ReceiptNotFound(VerificationError):
    reason = "not_found"


class ProviderUnavailable(VerificationError):
    """Local misconfiguration (e.g. missing text extractor); retrying will not help."""

    reason = "unavailable"


@dataclass(frozen=True)
class FieldLabels:
    sender: tuple
    amount: tuple
    date: tuple
    receiver: tuple = ()
    reference: tuple = ()
    # Labels of fields that are not read but must never be taken as values
    other: tuple = ()

    def all(self) -> tuple:
        return self.sender + self.amount + self.date + self.receiver + self.reference + self.other


class ReceiptProvider(ABC):
    """One institution's receipt lookup, with a provider-local retry policy."""

    name = ""
    labels: FieldLabels

    def __init__(
        self,
        url_template: str,
        *,
        timeout: float = 15.0,
        max_attempts: int = 2,
        retry_delay: float = 2.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url_template = url_template
        self.timeout = float(timeout)
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay = float(retry_delay)
        self.session = session or requests.Session()
        self.sleep = sleep

    def receipt_url(self, transaction_id: str) -> str:
        return self.url_template.format(transaction_id=transaction_id)

    def verify(self, transaction_id: str) -> Receipt:
        last: Optional[VerificationError] = None
        for attempt in range(1, self.max_attempts + 1):
            log.info("Verifying %s transaction %s (attempt %s/%s)", self.name, transaction_id, attempt, self.max_attempts)
            try:
                return self.fetch_receipt(transaction_id)
            except VerificationError as e:
                if not e.retryable:
                    raise
                last = e
                log.warning("%s attempt %s failed for %s: %s", self.name, attempt, transaction_id, e)
                if attempt < self.max_attempts:
                    self.sleep(self.retry_delay)
        if last is None:
            raise TransientProviderError(f"{self.name} made no attempt for {transaction_id}")
        exhausted = type(last)(f"{last} (after {self.max_attempts} attempts)")
        exhausted.retryable = False
        raise exhausted from last

    @abstractmethod
    def fetch_receipt(self, transaction_id: str) -> Receipt:
        """Single attempt: fetch, extract and parse."""

    def _get(self, url: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", None) or {"User-Agent": BROWSER_UA}
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransientProviderError(f"{self.name} timed out after {self.timeout:g}s") from e
        except requests.RequestException as e:
            raise TransientProviderError(f"{self.name} unreachable: {e}") from e
        if resp.status_code < 400:
            return resp

        # Release the pooled connection; streamed bodies are otherwise held open
        resp.close()
        if resp.status_code == 404:
            raise ReceiptNotFound(f"{self.name} transaction not found")
        if resp.status_code >= 500:
            raise TransientProviderError(f"{self.name} HTTP {resp.status_code}")
        raise ReceiptNotFound(f"{self.name} rejected lookup (HTTP {resp.status_code})")

    def _field(self, doc: ReceiptDocument, labels: tuple) -> str:
        return doc.find_value(labels, known=self.labels.all()) if labels else ""

    def _reference(self, transaction_id: str, doc: ReceiptDocument) -> str:
        """The institution's own reference, when it is a well-formed transaction id."""
        raw = self._field(doc, self.labels.reference)
        reference = normalize_transaction_id(raw)
        if not reference:
            return transaction_id
        if not TRANSACTION_ID_PATTERN.match(reference):
            log.warning("%s receipt %s carries unusable reference %r; keeping submitted id", self.name, transaction_id, raw)
            return transaction_id
        return reference

    def build_receipt(self, transaction_id: str, doc: ReceiptDocument) -> Receipt:
        raw_amount = self._field(doc, self.labels.amount)
        if not raw_amount:
            raise ReceiptFormatError(f"Could not locate amount on {self.name} receipt")

        amount = parse_amount(raw_amount)
        status = "valid"
        if amount is None or amount <= 0:
            log.warning("%s receipt %s has unusable amount %r", self.name, transaction_id, raw_amount)
            status = "invalid"
            amount = Decimal("0")

        return Receipt(
            transaction_id=self._reference(transaction_id, doc),
            sender_name=self._field(doc, self.labels.sender) or "Unknown",
            receiver_name=self._field(doc, self.labels.receiver) or None,
            amount=amount,
            date=self._field(doc, self.labels.date),
            status=status,
            method=self.name,
        )
