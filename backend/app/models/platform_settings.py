from datetime import datetime
import sqlalchemy as sa

from app.extensions import db


class PlatformSettings(db.Model):
    """Single-row integration switchboard. Secrets stay in the environment."""

    __tablename__ = "platform_settings"

    id = db.Column(db.Integer, primary_key=True)

    integrations_mode = db.Column(db.String(16), nullable=False, default="disabled", server_default="disabled")  # disabled | sandbox | live

    mpesa_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    paystack_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    stripe_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    intasend_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    email_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    push_enabled = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))
    auto_payouts_enabled = db.Column(db.Boolean, nullable=False, default=True, server_default=sa.text("true"))

    last_webhook_at = db.Column(db.DateTime, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    TOGGLES = (
        "mpesa_enabled",
        "paystack_enabled",
        "stripe_enabled",
        "intasend_enabled",
        "email_enabled",
        "push_enabled",
        "auto_payouts_enabled",
    )

    def to_dict(self):
        payload = {
            "integrations_mode": self.integrations_mode or "disabled",
            "last_webhook_at": self.last_webhook_at.isoformat() if self.last_webhook_at else None,
            "updated_by": int(self.updated_by) if self.updated_by is not None else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        for name in self.TOGGLES:
            payload[name] = bool(getattr(self, name, False))
        return payload
