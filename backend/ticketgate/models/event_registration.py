from datetime import datetime

from ticketgate.extensions import db


REGISTRATION_STATUSES = ("registered", "payment_initiated", "confirmed", "cancelled")


class EventRegistration(db.Model):
    __tablename__ = "event_registrations"
    __table_args__ = (
        db.UniqueConstraint("user_id", "event_id", name="uq_event_registration_user_event"),
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default="registered")  # registered|payment_initiated|confirmed|cancelled
    price_at_registration = db.Column(db.Numeric(12, 2), nullable=True)

    # Set only by ticket check-in; never reset
    checked_in = db.Column(db.Boolean, nullable=False, default=False)
    checked_in_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "event_id": int(self.event_id),
            "status": self.status,
            "checked_in": bool(self.checked_in),
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
        }
