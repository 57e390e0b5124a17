from datetime import datetime

from app.extensions import db


class NotificationLog(db.Model):
    __tablename__ = "notification_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, default="email")  # email | push | in_app
    template = db.Column(db.String(48), nullable=False, default="")
    recipient = db.Column(db.String(512), nullable=True)
    subject = db.Column(db.String(200), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | sent | failed | retrying
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    provider_ref = db.Column(db.String(128), nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    sent_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "type": self.type or "email",
            "template": self.template or "",
            "recipient": self.recipient or "",
            "subject": self.subject or "",
            "status": self.status or "pending",
            "retry_count": int(self.retry_count or 0),
            "provider_ref": self.provider_ref or "",
            "error": self.error or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
