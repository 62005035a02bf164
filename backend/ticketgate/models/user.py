from datetime import datetime

from ticketgate.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=True)
    phone = db.Column(db.String(32), index=True, nullable=True)

    # Ticket delivery goes through the Telegram bot the buyer registered with
    telegram_chat_id = db.Column(db.String(64), nullable=True)
    telegram_username = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "telegram_username": self.telegram_username,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
