"""Match confirmed receipts to pending invoices and commit the payment.

The payment commit is the source of truth. Registration confirmation, ticket
issuance and notification happen after it and can only add warnings to the
result; they never undo or fail a committed payment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from ticketgate.models import Invoice
from ticketgate.providers.base import Receipt
from ticketgate.services.store import CommitConflict, PaymentStore
from ticketgate.services.tickets import TicketService

log = logging.getLogger(__name__)

OUTCOME_PAID = "paid"
OUTCOME_DUPLICATE = "duplicate"

_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d-%m-%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%m/%d/%Y, %I:%M:%S %p",
    "%m/%d/%Y %I:%M:%S %p",
    "%d-%b-%Y %H:%M",
    "%d-%b-%y",
    "%d %b %Y %H:%M:%S",
)


def parse_receipt_date(raw: Any) -> Optional[datetime]:
    text = " ".join(str(raw or "").split())
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = datetime.utcfromtimestamp(parsed.timestamp())
    return parsed


class ReconciliationError(Exception):
    code = "reconciliation_error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        out = {"success": False, "error": self.code, "message": self.message}
        out.update(self.context)
        return out


class InvalidReceipt(ReconciliationError):
    code = "invalid_receipt"


class NoMatchingInvoice(ReconciliationError):
    code = "no_matching_invoice"
    status_code = 404


class DuplicateTransactionOtherUser(ReconciliationError):
    code = "duplicate_transaction"
    status_code = 409


class PaymentCommitConflict(ReconciliationError):
    code = "commit_conflict"
    status_code = 409


@dataclass
class ReconciliationResult:
    invoice: Invoice
    outcome: str = OUTCOME_PAID
    ticket_issued: bool = False
    reference: Optional[str] = None
    ticket_url: Optional[str] = None
    registration_confirmed: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return self.outcome == OUTCOME_DUPLICATE


class ReconciliationEngine:
    def __init__(self, store: PaymentStore, tickets: TicketService, notifier: Any = None, *, clock=datetime.utcnow):
        self.store = store
        self.tickets = tickets
        self.notifier = notifier
        self.clock = clock

    def reconcile(self, receipt: Receipt, user_id: int, method: str, event_hint: Optional[str] = None) -> ReconciliationResult:
        if not receipt.is_valid or receipt.amount <= 0:
            raise InvalidReceipt("Invalid transaction receipt")

        tx = receipt.transaction_id
        existing = self.store.find_invoice_by_transaction(tx)
        if existing is not None:
            return self._duplicate(existing, user_id, tx)

        invoice = None
        for attempt in (1, 2):
            candidate = self.select_candidate(user_id, receipt.amount, event_hint)
            if candidate is None:
                raise NoMatchingInvoice(
                    f"No pending invoice found for amount {receipt.amount} ETB",
                    searchedAmount=str(receipt.amount),
                )
            try:
                invoice = self.store.commit_payment(
                    candidate,
                    tx,
                    self._receipt_data(receipt),
                    paid_at=parse_receipt_date(receipt.date) or self.clock(),
                    method=method,
                )
                break
            except CommitConflict as e:
                log.warning("Commit conflict for %s (attempt %s): %s", tx, attempt, e)
                holder = self.store.find_invoice_by_transaction(tx)
                if holder is not None:
                    return self._duplicate(holder, user_id, tx)
                if attempt == 2:
                    self.store.record_audit("payment_conflict", target_type="transaction", target_id=tx, actor_user_id=user_id)
                    raise PaymentCommitConflict(
                        "This payment could not be recorded because the invoice changed. Please try again.",
                        transactionId=tx,
                    ) from e

        log.info("Payment %s committed to invoice %s for user %s", tx, invoice.invoice_id, user_id)
        self.store.record_audit(
            "payment_verified",
            target_type="invoice",
            target_id=invoice.invoice_id,
            actor_user_id=user_id,
            meta={"transaction_id": tx, "method": method, "amount": str(receipt.amount)},
        )

        result = ReconciliationResult(invoice=invoice)
        self._confirm_registration(result)
        self._deliver_ticket(result)
        return result

    def select_candidate(self, user_id: int, paid_amount: Decimal, event_hint: Optional[str] = None) -> Optional[Invoice]:
        """Newest pending invoice the payment covers, preferring the hinted event."""
        eligible = [inv for inv in self.store.find_pending_invoices(user_id) if Decimal(inv.amount) <= paid_amount]
        hint = (event_hint or "").strip().casefold()
        if hint:
            for inv in eligible:
                if (inv.event_name or "").strip().casefold() == hint:
                    return inv
        return eligible[0] if eligible else None

    def _duplicate(self, existing: Invoice, user_id: int, tx: str) -> ReconciliationResult:
        if int(existing.user_id) != int(user_id):
            log.warning("Transaction %s already used by user %s; rejected for user %s", tx, existing.user_id, user_id)
            self.store.record_audit("payment_duplicate", target_type="transaction", target_id=tx, actor_user_id=user_id, meta={"owner": int(existing.user_id)})
            raise DuplicateTransactionOtherUser(
                "This transaction ID has already been used for another payment.",
                transactionId=tx,
                paidAt=existing.paid_at.isoformat() if existing.paid_at else None,
            )
        log.info("Duplicate submission of %s by user %s; re-sending ticket", tx, user_id)
        result = ReconciliationResult(invoice=existing, outcome=OUTCOME_DUPLICATE)
        if existing.status == "paid":
            self._confirm_registration(result)
            self._deliver_ticket(result)
        return result

    def _receipt_data(self, receipt: Receipt) -> dict:
        return {
            "senderName": receipt.sender_name,
            "confirmedAmount": str(receipt.amount),
            "date": receipt.date,
            "receiver": receipt.receiver_name,
        }

    def _confirm_registration(self, result: ReconciliationResult) -> None:
        invoice = result.invoice
        if not invoice.event_id and not invoice.event_name:
            return
        try:
            registration = self.store.registration_for_invoice(invoice)
            if registration is None:
                result.warnings.append("registration_not_found")
                return
            self.store.confirm_registration(registration)
            result.registration_confirmed = registration.status == "confirmed"
        except Exception as e:
            log.warning("Registration confirmation failed for invoice %s: %s", invoice.invoice_id, e, exc_info=True)
            self.store.rollback()
            result.warnings.append("registration_confirmation_failed")

    def _deliver_ticket(self, result: ReconciliationResult) -> None:
        invoice = result.invoice
        try:
            issued = self.tickets.issue(invoice)
        except Exception as e:
            log.warning("Ticket issuance failed for invoice %s: %s", invoice.invoice_id, e, exc_info=True)
            result.warnings.append("ticket_issue_failed")
            return
        result.ticket_issued = True
        result.reference = issued.reference
        result.ticket_url = issued.url

        if self.notifier is None:
            return
        try:
            user = self.store.get_user(invoice.user_id)
            ok, detail = self.notifier.notify_ticket_issued(user, invoice, issued.image, issued.url)
        except Exception as e:
            log.warning("Ticket notification raised for invoice %s: %s", invoice.invoice_id, e, exc_info=True)
            result.warnings.append("notification_failed")
            return
        if not ok:
            log.warning("Ticket notification not delivered for invoice %s: %s", invoice.invoice_id, detail)
            result.warnings.append(f"notification_failed:{detail}")
