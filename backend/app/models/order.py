from datetime import datetime
import json

from app.extensions import db


def _iso(value):
    return value.isoformat() if value else None


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(40), nullable=False, default="pending_payment", index=True)

    subtotal_ksh = db.Column(db.Float, nullable=False, default=0.0)
    shipping_fee_ksh = db.Column(db.Float, nullable=False, default=0.0)
    total_ksh = db.Column(db.Float, nullable=False, default=0.0)
    commission_rate = db.Column(db.Float, nullable=False, default=0.10)
    commission_amount = db.Column(db.Float, nullable=False, default=0.0)
    payout_amount = db.Column(db.Float, nullable=True)

    buyer_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    vendor_confirmed = db.Column(db.Boolean, nullable=False, default=False)

    accepted_at = db.Column(db.DateTime, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True, index=True)
    arrived_at = db.Column(db.DateTime, nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    auto_release_at = db.Column(db.DateTime, nullable=True, index=True)

    vendor_notes = db.Column(db.Text, nullable=True)

    # Delivery handover code, readable by the buyer only.
    delivery_otp = db.Column(db.String(6), nullable=True)
    otp_generated_at = db.Column(db.DateTime, nullable=True)
    otp_verified_at = db.Column(db.DateTime, nullable=True)
    otp_attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship("OrderItem", backref="order", lazy=True, cascade="all, delete-orphan")
    shipping = db.relationship("OrderShippingDetails", backref="order", uselist=False, lazy=True, cascade="all, delete-orphan")

    @property
    def is_pickup(self) -> bool:
        details = self.shipping
        return bool(details and (details.delivery_type or "").strip().lower() == "pickup")

    def to_dict(self, *, include_otp: bool = False):
        payload = {
            "id": int(self.id),
            "customer_id": int(self.customer_id),
            "vendor_id": int(self.vendor_id),
            "status": self.status or "",
            "subtotal_ksh": float(self.subtotal_ksh or 0.0),
            "shipping_fee_ksh": float(self.shipping_fee_ksh or 0.0),
            "total_ksh": float(self.total_ksh or 0.0),
            "commission_rate": float(self.commission_rate or 0.0),
            "commission_amount": float(self.commission_amount or 0.0),
            "payout_amount": float(self.payout_amount) if self.payout_amount is not None else None,
            "buyer_confirmed": bool(self.buyer_confirmed),
            "vendor_confirmed": bool(self.vendor_confirmed),
            "accepted_at": _iso(self.accepted_at),
            "shipped_at": _iso(self.shipped_at),
            "arrived_at": _iso(self.arrived_at),
            "confirmed_at": _iso(self.confirmed_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "refunded_at": _iso(self.refunded_at),
            "auto_release_at": _iso(self.auto_release_at),
            "vendor_notes": self.vendor_notes or "",
            "otp_generated_at": _iso(self.otp_generated_at),
            "otp_verified_at": _iso(self.otp_verified_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "items": [i.to_dict() for i in (self.items or [])],
            "shipping": self.shipping.to_dict() if self.shipping else None,
        }
        if include_otp:
            payload["delivery_otp"] = self.delivery_otp or None
        return payload


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    product_name = db.Column(db.String(200), nullable=False, default="")
    product_snapshot = db.Column(db.Text, nullable=True)  # JSON
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_ksh = db.Column(db.Float, nullable=False, default=0.0)
    size = db.Column(db.String(16), nullable=True)

    def snapshot_dict(self) -> dict:
        try:
            data = json.loads(self.product_snapshot or "{}")
        except Exception:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "product_id": int(self.product_id) if self.product_id is not None else None,
            "product_name": self.product_name or "",
            "product_snapshot": self.snapshot_dict(),
            "quantity": int(self.quantity or 0),
            "unit_price_ksh": float(self.unit_price_ksh or 0.0),
            "size": self.size or "",
        }


class OrderShippingDetails(db.Model):
    __tablename__ = "order_shipping_details"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    recipient_name = db.Column(db.String(160), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    county = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(24), nullable=True)
    country = db.Column(db.String(80), nullable=False, default="Kenya")
    delivery_notes = db.Column(db.Text, nullable=True)
    delivery_type = db.Column(db.String(16), nullable=False, default="delivery")  # delivery | pickup
    gps_latitude = db.Column(db.Float, nullable=True)
    gps_longitude = db.Column(db.Float, nullable=True)

    courier_name = db.Column(db.String(120), nullable=True)
    tracking_number = db.Column(db.String(120), nullable=True)

    # Live location shared by the vendor while the order is out for delivery.
    delivery_tracking_enabled = db.Column(db.Boolean, nullable=False, default=False)
    delivery_current_latitude = db.Column(db.Float, nullable=True)
    delivery_current_longitude = db.Column(db.Float, nullable=True)
    delivery_location_updated_at = db.Column(db.DateTime, nullable=True)
    tracking_started_at = db.Column(db.DateTime, nullable=True)
    tracking_stopped_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "recipient_name": self.recipient_name or "",
            "phone": self.phone or "",
            "email": self.email or "",
            "address_line1": self.address_line1 or "",
            "address_line2": self.address_line2 or "",
            "city": self.city or "",
            "county": self.county or "",
            "postal_code": self.postal_code or "",
            "country": self.country or "Kenya",
            "delivery_notes": self.delivery_notes or "",
            "delivery_type": self.delivery_type or "delivery",
            "gps_latitude": self.gps_latitude,
            "gps_longitude": self.gps_longitude,
            "courier_name": self.courier_name or "",
            "tracking_number": self.tracking_number or "",
            "delivery_tracking_enabled": bool(self.delivery_tracking_enabled),
        }

    def stop_tracking(self, when: datetime) -> bool:
        if not self.delivery_tracking_enabled:
            return False
        self.delivery_tracking_enabled = False
        self.tracking_stopped_at = when
        return True
