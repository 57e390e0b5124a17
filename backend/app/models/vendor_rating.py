from datetime import datetime

from app.extensions import db


class VendorRating(db.Model):
    __tablename__ = "vendor_ratings"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    rating = db.Column(db.Integer, nullable=False)
    review = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "vendor_id": int(self.vendor_id),
            "customer_id": int(self.customer_id),
            "rating": int(self.rating),
            "review": self.review or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
