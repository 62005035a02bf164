from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ticketgate.extensions import db
from ticketgate.models import AuditLog, Event, EventRegistration, Invoice, User

log = logging.getLogger(__name__)


class CommitConflict(Exception):
    """The conditional payment commit lost a race (or hit the unique index)."""


class PaymentStore:
    """Invoice / registration persistence used by reconciliation and tickets.

    Every write is a single conditional statement so concurrent requests
    resolve through the database rather than through locks.
    """

    def get_user(self, user_id: int) -> Optional[User]:
        return db.session.get(User, int(user_id))

    def find_pending_invoices(self, user_id: int) -> List[Invoice]:
        return (
            Invoice.query.filter_by(user_id=int(user_id), status="pending")
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .all()
        )

    def find_invoice_by_transaction(self, transaction_id: str) -> Optional[Invoice]:
        return Invoice.query.filter_by(transaction_id=transaction_id).first()

    def find_paid_invoice(self, invoice_id: str, transaction_id: str) -> Optional[Invoice]:
        return Invoice.query.filter_by(invoice_id=invoice_id, transaction_id=transaction_id, status="paid").first()

    def commit_payment(
        self,
        invoice: Invoice,
        transaction_id: str,
        receipt_data: dict,
        *,
        paid_at: datetime,
        method: str,
    ) -> Invoice:
        stmt = (
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == "pending",
                Invoice.transaction_id.is_(None),
            )
            .values(
                status="paid",
                transaction_id=transaction_id,
                paid_at=paid_at,
                payment_method=method or None,
                receipt_data=json.dumps(receipt_data, default=str),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            if result.rowcount != 1:
                db.session.rollback()
                raise CommitConflict(f"invoice {invoice.invoice_id} is no longer pending")
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise CommitConflict(f"transaction {transaction_id} already recorded") from e
        db.session.refresh(invoice)
        return invoice

    def resolve_event(self, invoice: Invoice) -> Optional[Event]:
        if invoice.event_id:
            event = db.session.get(Event, int(invoice.event_id))
            if event:
                return event
        if invoice.event_name:
            return Event.query.filter_by(name=invoice.event_name).order_by(Event.id.desc()).first()
        return None

    def find_registration(self, user_id: int, event_id: int) -> Optional[EventRegistration]:
        return EventRegistration.query.filter_by(user_id=int(user_id), event_id=int(event_id)).first()

    def get_registration(self, registration_id: int) -> Optional[EventRegistration]:
        return db.session.get(EventRegistration, int(registration_id))

    def registration_for_invoice(self, invoice: Invoice) -> Optional[EventRegistration]:
        if invoice.registration_id:
            reg = self.get_registration(invoice.registration_id)
            if reg:
                return reg
        event = self.resolve_event(invoice)
        if not event:
            return None
        return self.find_registration(invoice.user_id, event.id)

    def confirm_registration(self, registration: EventRegistration) -> bool:
        """Advance to confirmed. Idempotent; cancelled registrations are left alone."""
        if registration.status == "confirmed":
            return False
        if registration.status == "cancelled":
            log.warning("Registration %s is cancelled; not confirming", registration.id)
            return False
        registration.status = "confirmed"
        db.session.add(registration)
        db.session.commit()
        return True

    def check_in(self, registration_id: int, at: datetime) -> bool:
        """Flip checked_in false -> true. Returns False if it was already set."""
        stmt = (
            update(EventRegistration)
            .where(EventRegistration.id == int(registration_id), EventRegistration.checked_in.is_(False))
            .values(checked_in=True, checked_in_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    def paid_invoices_with_event(self, limit: int = 200) -> List[Invoice]:
        return (
            Invoice.query.filter(Invoice.status == "paid")
            .filter((Invoice.event_id.isnot(None)) | (Invoice.event_name.isnot(None)))
            .order_by(Invoice.paid_at.desc())
            .limit(int(limit))
            .all()
        )

    def rollback(self) -> None:
        db.session.rollback()

    def record_audit(self, action: str, *, target_type: str, target_id: Any, actor_user_id: Optional[int] = None, meta: Optional[dict] = None) -> None:
        try:
            db.session.add(AuditLog(
                actor_user_id=actor_user_id,
                action=action,
                target_type=target_type,
                target_id=str(target_id) if target_id is not None else None,
                meta=json.dumps(meta or {}, default=str),
            ))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            log.exception("Failed to write audit log %s", action)
