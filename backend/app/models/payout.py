from datetime import datetime

from app.extensions import db


class Payout(db.Model):
    __tablename__ = "payouts"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    amount_ksh = db.Column(db.Float, nullable=False, default=0.0)
    method = db.Column(db.String(16), nullable=False, default="mpesa")  # mpesa | bank
    destination = db.Column(db.String(120), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | processing | paid | failed
    trigger_type = db.Column(db.String(16), nullable=False, default="automatic")  # automatic | manual
    fee_paid_by = db.Column(db.String(16), nullable=False, default="platform")  # platform | vendor
    transfer_fee_ksh = db.Column(db.Float, nullable=False, default=0.0)
    balance_before = db.Column(db.Float, nullable=True)

    reference = db.Column(db.String(128), nullable=True, index=True)
    failure_reason = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "vendor_id": int(self.vendor_id),
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "amount_ksh": float(self.amount_ksh or 0.0),
            "method": self.method or "mpesa",
            "destination": self.destination or "",
            "status": self.status or "pending",
            "trigger_type": self.trigger_type or "automatic",
            "fee_paid_by": self.fee_paid_by or "platform",
            "transfer_fee_ksh": float(self.transfer_fee_ksh or 0.0),
            "balance_before": float(self.balance_before) if self.balance_before is not None else None,
            "reference": self.reference or "",
            "failure_reason": self.failure_reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
