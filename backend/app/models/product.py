from datetime import datetime
import json

from app.extensions import db


CONDITIONS = ("new", "like_new", "good", "fair")


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    brand = db.Column(db.String(120), nullable=True)
    category = db.Column(db.String(80), nullable=True, index=True)

    price_ksh = db.Column(db.Float, nullable=False, default=0.0)
    stock = db.Column(db.Integer, nullable=False, default=0)

    images_json = db.Column(db.Text, nullable=True)  # JSON list of urls

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active | draft

    condition = db.Column(db.String(16), nullable=False, default="new")  # new | like_new | good | fair
    condition_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def images(self) -> list:
        raw = (self.images_json or "").strip()
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except Exception:
            return []
        return [str(x) for x in data if x] if isinstance(data, list) else []

    @images.setter
    def images(self, value) -> None:
        items = [str(x).strip() for x in (value or []) if str(x or "").strip()]
        self.images_json = json.dumps(items)

    def snapshot(self) -> dict:
        return {
            "id": int(self.id),
            "name": self.name or "",
            "brand": self.brand or "",
            "category": self.category or "",
            "price_ksh": float(self.price_ksh or 0.0),
            "image": (self.images[0] if self.images else ""),
        }

    def to_dict(self):
        return {
            "id": int(self.id),
            "vendor_id": int(self.vendor_id),
            "name": self.name or "",
            "description": self.description or "",
            "brand": self.brand or "",
            "category": self.category or "",
            "price_ksh": float(self.price_ksh or 0.0),
            "stock": int(self.stock or 0),
            "images": self.images,
            "status": self.status or "active",
            "condition": self.condition or "new",
            "condition_notes": self.condition_notes or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
