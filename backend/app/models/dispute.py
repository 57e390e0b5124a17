from datetime import datetime
import json

from app.extensions import db


class Dispute(db.Model):
    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.String(24), nullable=False, default="other")  # no_delivery | wrong_item | damaged | other
    description = db.Column(db.Text, nullable=True)
    evidence_json = db.Column(db.Text, nullable=True)

    # open | under_review | resolved_refund | resolved_release | closed
    status = db.Column(db.String(24), nullable=False, default="open", index=True)
    source = db.Column(db.String(16), nullable=False, default="buyer")  # buyer | system

    vendor_response = db.Column(db.Text, nullable=True)
    vendor_responded_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def evidence_urls(self) -> list:
        try:
            data = json.loads(self.evidence_json or "[]")
        except Exception:
            return []
        return [str(x) for x in data] if isinstance(data, list) else []

    @evidence_urls.setter
    def evidence_urls(self, value) -> None:
        self.evidence_json = json.dumps([str(x) for x in (value or []) if str(x or "").strip()])

    @property
    def is_active(self) -> bool:
        return (self.status or "") in ("open", "under_review")

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "customer_id": int(self.customer_id),
            "vendor_id": int(self.vendor_id),
            "reason": self.reason or "other",
            "description": self.description or "",
            "evidence_urls": self.evidence_urls,
            "status": self.status or "open",
            "source": self.source or "buyer",
            "vendor_response": self.vendor_response or "",
            "vendor_responded_at": self.vendor_responded_at.isoformat() if self.vendor_responded_at else None,
            "resolution_notes": self.resolution_notes or "",
            "resolved_by": int(self.resolved_by) if self.resolved_by is not None else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
