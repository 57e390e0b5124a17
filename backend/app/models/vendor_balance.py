from datetime import datetime

from app.extensions import db


class VendorBalance(db.Model):
    __tablename__ = "vendor_balances"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    pending_balance = db.Column(db.Float, nullable=False, default=0.0)
    total_earned = db.Column(db.Float, nullable=False, default=0.0)
    total_paid_out = db.Column(db.Float, nullable=False, default=0.0)
    last_payout_at = db.Column(db.DateTime, nullable=True)

    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "vendor_id": int(self.vendor_id),
            "pending_balance": float(self.pending_balance or 0.0),
            "total_earned": float(self.total_earned or 0.0),
            "total_paid_out": float(self.total_paid_out or 0.0),
            "last_payout_at": self.last_payout_at.isoformat() if self.last_payout_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
