from datetime import datetime
import json

from app.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    gateway = db.Column(db.String(16), nullable=False, default="mpesa")  # mpesa | card | paystack | intasend
    # pending | authorized | captured | failed | refunded | chargeback
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    amount_ksh = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="KES")

    # Provider handle used to find the row from a webhook (CheckoutRequestID, PaymentIntent id, reference).
    transaction_reference = db.Column(db.String(128), nullable=True, index=True)
    # Provider receipt/invoice id (MpesaReceiptNumber, IntaSend invoice_id, ...).
    transaction_id = db.Column(db.String(128), nullable=True, index=True)

    metadata_json = db.Column(db.Text, nullable=True)

    captured_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def meta_dict(self) -> dict:
        raw = (self.metadata_json or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except Exception:
            return {}
        return data if isinstance(data, dict) else {}

    def update_meta(self, **values) -> None:
        meta = self.meta_dict()
        meta.update(values)
        self.metadata_json = json.dumps(meta, separators=(",", ":"), default=str)

    @property
    def is_delivery_fee(self) -> bool:
        return bool(self.meta_dict().get("is_delivery_fee"))

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "gateway": self.gateway or "",
            "status": self.status or "pending",
            "amount_ksh": float(self.amount_ksh or 0.0),
            "currency": self.currency or "KES",
            "transaction_reference": self.transaction_reference or "",
            "transaction_id": self.transaction_id or "",
            "metadata": self.meta_dict(),
            "captured_at": self.captured_at.isoformat() if self.captured_at else None,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
