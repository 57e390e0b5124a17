from datetime import datetime
import json

from app.extensions import db


class Notification(db.Model):
    """In-app inbox entry. Email and push deliveries are tracked in NotificationLog."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    kind = db.Column(db.String(48), nullable=False, default="general")  # template name
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=True)

    order_id = db.Column(db.Integer, nullable=True, index=True)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        if self.read_at is None:
            self.read_at = read_at or datetime.utcnow()
        return self.read_at

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind or "general",
            "title": self.title or "",
            "message": self.message or "",
            "link": self.link or "",
            "order_id": self.order_id,
            "is_read": self.read_at is not None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "meta": self.meta_dict(),
        }
