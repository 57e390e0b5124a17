from datetime import datetime

from app.extensions import db


class EscrowTransaction(db.Model):
    __tablename__ = "escrow_transactions"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="held", index=True)  # held | released | refunded | withheld

    held_amount = db.Column(db.Float, nullable=False, default=0.0)
    commission_amount = db.Column(db.Float, nullable=False, default=0.0)
    release_amount = db.Column(db.Float, nullable=False, default=0.0)

    held_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    released_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    withheld_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.String(240), nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "payment_id": int(self.payment_id) if self.payment_id is not None else None,
            "status": self.status or "held",
            "held_amount": float(self.held_amount or 0.0),
            "commission_amount": float(self.commission_amount or 0.0),
            "release_amount": float(self.release_amount or 0.0),
            "held_at": self.held_at.isoformat() if self.held_at else None,
            "released_at": self.released_at.isoformat() if self.released_at else None,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "withheld_at": self.withheld_at.isoformat() if self.withheld_at else None,
            "notes": self.notes or "",
        }
