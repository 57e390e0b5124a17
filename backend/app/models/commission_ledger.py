from datetime import datetime

from app.extensions import db


class CommissionLedger(db.Model):
    __tablename__ = "commission_ledger"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    commission_rate = db.Column(db.Float, nullable=False, default=0.10)
    commission_amount = db.Column(db.Float, nullable=False, default=0.0)
    order_total = db.Column(db.Float, nullable=False, default=0.0)
    payout_amount = db.Column(db.Float, nullable=False, default=0.0)

    recorded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "vendor_id": int(self.vendor_id),
            "commission_rate": float(self.commission_rate or 0.0),
            "commission_amount": float(self.commission_amount or 0.0),
            "order_total": float(self.order_total or 0.0),
            "payout_amount": float(self.payout_amount or 0.0),
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
