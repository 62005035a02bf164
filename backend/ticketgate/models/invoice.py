import json
from datetime import datetime

from ticketgate.extensions import db


INVOICE_STATUSES = ("pending", "paid", "failed", "cancelled")


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(db.String(64), nullable=False, unique=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)
    registration_id = db.Column(db.Integer, db.ForeignKey("event_registrations.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="ETB")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Idempotency key: written once on reconciliation, unique across invoices
    transaction_id = db.Column(db.String(64), nullable=True, unique=True)
    payment_method = db.Column(db.String(16), nullable=True)  # telebirr|cbe|boa
    paid_at = db.Column(db.DateTime, nullable=True)
    receipt_data = db.Column(db.Text, nullable=True)  # JSON string

    event_name = db.Column(db.String(200), nullable=True)
    event_place = db.Column(db.String(200), nullable=True)
    event_time = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def receipt_dict(self) -> dict:
        raw = (self.receipt_data or "").strip()
        if not raw:
            return {}
        try:
            d = json.loads(raw)
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def metadata_dict(self) -> dict:
        return {
            "eventName": self.event_name or "",
            "place": self.event_place or "",
            "time": self.event_time.isoformat() if self.event_time else None,
        }

    def to_dict(self) -> dict:
        return {
            "invoiceId": self.invoice_id,
            "userId": int(self.user_id),
            "eventId": int(self.event_id) if self.event_id else None,
            "amount": str(self.amount),
            "currency": self.currency or "ETB",
            "status": self.status,
            "transactionId": self.transaction_id,
            "paymentMethod": self.payment_method,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "receiptData": self.receipt_dict(),
            "metadata": self.metadata_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
