import json
from datetime import datetime

from ticketgate.extensions import db


AUDIT_ACTIONS = (
    "payment_verified",
    "payment_duplicate",
    "payment_conflict",
    "ticket_checkin",
    "ticket_tamper",
)


class AuditLog(db.Model):
    """Append-only trail of payment and gate decisions."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(64), nullable=False)
    # invoice id, transaction id or registration id depending on target_type
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)
    meta = db.Column(db.Text, nullable=True)  # JSON string

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def meta_dict(self) -> dict:
        try:
            d = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "actorUserId": int(self.actor_user_id) if self.actor_user_id else None,
            "action": self.action,
            "targetType": self.target_type or "",
            "targetId": self.target_id,
            "meta": self.meta_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
