from datetime import datetime

from app.extensions import db


class PriceAlert(db.Model):
    __tablename__ = "price_alerts"
    __table_args__ = (db.UniqueConstraint("user_id", "product_id", name="uq_price_alerts_user_product"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Without a target, any drop below original_price fires the alert.
    target_price = db.Column(db.Float, nullable=True)
    original_price = db.Column(db.Float, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    notified_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def triggered_by(self, price: float) -> bool:
        if self.target_price is not None:
            return float(price) <= float(self.target_price)
        return float(price) < float(self.original_price)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "product_id": int(self.product_id),
            "target_price": float(self.target_price) if self.target_price is not None else None,
            "original_price": float(self.original_price),
            "is_active": bool(self.is_active),
            "notified_at": self.notified_at.isoformat() if self.notified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
