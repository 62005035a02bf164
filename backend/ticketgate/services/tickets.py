from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from ticketgate.models import EventRegistration, Invoice
from ticketgate.services.store import PaymentStore
from ticketgate.utils.qr import render_qr_png
from ticketgate.utils.tickets import (
    InvalidTicketSignature,
    TicketAlreadyUsed,
    TicketExpired,
    TicketNotFound,
    TicketSigner,
)

log = logging.getLogger(__name__)

TICKET_STATUSES = ("valid", "used", "expired")


def _now() -> datetime:
    return datetime.utcnow()


def derive_ticket_status(event_time: Optional[datetime], registration: Optional[EventRegistration], now: datetime) -> str:
    """Current ticket status. `used` wins over `expired`."""
    if registration is not None and registration.checked_in:
        return "used"
    if event_time is not None and now > event_time:
        return "expired"
    return "valid"


@dataclass(frozen=True)
class IssuedTicket:
    reference: str
    url: str
    image: bytes


@dataclass(frozen=True)
class TicketReference:
    reference: str
    invoice_id: str
    transaction_id: str
    user_id: int
    event_name: str
    amount: Decimal
    status: str
    created_at: datetime
    signature: str

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "invoiceId": self.invoice_id,
            "transactionId": self.transaction_id,
            "userId": self.user_id,
            "eventName": self.event_name,
            "amount": str(self.amount),
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class TicketView:
    ticket: TicketReference
    invoice: Invoice
    registration: Optional[EventRegistration]

    @property
    def status(self) -> str:
        return self.ticket.status

    def to_dict(self) -> dict:
        return {
            "ticket": self.ticket.to_dict(),
            "invoice": self.invoice.to_dict(),
            "registration": self.registration.to_dict() if self.registration else None,
            "status": self.status,
        }


class TicketService:
    def __init__(
        self,
        store: PaymentStore,
        signer: TicketSigner,
        *,
        render: Callable[[str], bytes] = render_qr_png,
        clock: Callable[[], datetime] = _now,
    ):
        self.store = store
        self.signer = signer
        self.render = render
        self.clock = clock

    def issue(self, invoice: Invoice) -> IssuedTicket:
        if invoice.status != "paid" or not invoice.transaction_id:
            raise ValueError(f"invoice {invoice.invoice_id} is not paid")
        reference = self.signer.issue(invoice.invoice_id, invoice.transaction_id)
        url = self.signer.url_for(reference)
        return IssuedTicket(reference=reference, url=url, image=self.render(url))

    def render_for(self, reference: str) -> bytes:
        view = self.verify(reference)
        return self.render(self.signer.url_for(view.ticket.reference))

    def verify(self, reference: str) -> TicketView:
        try:
            signed = self.signer.unpack(reference)
        except InvalidTicketSignature as e:
            log.error("Rejected ticket reference (%s): %.64s", e.message, reference)
            self.store.record_audit("ticket_tamper", target_type="ticket", target_id=None, meta={"reference": (reference or "")[:256], "reason": e.message})
            raise

        invoice = self.store.find_paid_invoice(signed.invoice_id, signed.transaction_id)
        if invoice is None:
            raise TicketNotFound("Ticket does not match any completed payment")

        registration = self.store.registration_for_invoice(invoice)
        status = derive_ticket_status(invoice.event_time, registration, self.clock())
        log.info("Ticket status check: invoice=%s checked_in=%s status=%s", invoice.invoice_id, bool(registration and registration.checked_in), status)

        ticket = TicketReference(
            reference=signed.reference,
            invoice_id=signed.invoice_id,
            transaction_id=signed.transaction_id,
            user_id=int(invoice.user_id),
            event_name=invoice.event_name or "Event",
            amount=invoice.amount,
            status=status,
            created_at=signed.issued_at,
            signature=signed.signature,
        )
        return TicketView(ticket=ticket, invoice=invoice, registration=registration)

    def check_in(self, reference: str) -> tuple[TicketView, datetime]:
        view = self.verify(reference)
        reg = view.registration
        if view.status == "used":
            raise TicketAlreadyUsed("Ticket has already been used", usedAt=_iso(reg.checked_in_at if reg else None))
        if view.status == "expired":
            raise TicketExpired("This ticket has expired")
        if reg is None:
            raise TicketNotFound("Registration not found for this ticket")

        at = self._mark_checked_in(reg)
        log.info("Ticket marked as used: invoice=%s registration=%s", view.invoice.invoice_id, reg.id)
        self.store.record_audit("ticket_checkin", target_type="registration", target_id=reg.id, actor_user_id=None, meta={"invoice_id": view.invoice.invoice_id})
        return self.verify(reference), at

    def check_in_registration(self, registration_id: int) -> tuple[EventRegistration, datetime]:
        reg = self.store.get_registration(registration_id)
        if reg is None:
            raise TicketNotFound("Registration not found")
        if reg.checked_in:
            raise TicketAlreadyUsed("User already checked in", usedAt=_iso(reg.checked_in_at))
        at = self._mark_checked_in(reg)
        self.store.record_audit("ticket_checkin", target_type="registration", target_id=reg.id, meta={"manual": True})
        return self.store.get_registration(registration_id), at

    def _mark_checked_in(self, reg: EventRegistration) -> datetime:
        at = self.clock()
        reg_id = int(reg.id)
        if not self.store.check_in(reg_id, at):
            current = self.store.get_registration(reg_id)
            raise TicketAlreadyUsed("Ticket has already been used", usedAt=_iso(current.checked_in_at if current else None))
        return at


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
