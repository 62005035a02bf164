from datetime import datetime

from ticketgate.extensions import db


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)

    # Legacy invoices only carry the event name, so it is looked up by name too
    name = db.Column(db.String(200), nullable=False, index=True)
    location = db.Column(db.String(200), nullable=True)
    starts_at = db.Column(db.DateTime, nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name,
            "location": self.location or "",
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "price": str(self.price) if self.price is not None else None,
            "capacity": self.capacity,
        }
