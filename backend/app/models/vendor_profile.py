from datetime import datetime

from app.extensions import db


class VendorProfile(db.Model):
    __tablename__ = "vendor_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    store_name = db.Column(db.String(160), nullable=False, default="")
    store_description = db.Column(db.Text, nullable=True)

    # Payout destination
    payout_method = db.Column(db.String(16), nullable=False, default="mpesa")  # mpesa | bank
    mpesa_number = db.Column(db.String(20), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)
    bank_account_number = db.Column(db.String(64), nullable=True)
    bank_account_name = db.Column(db.String(120), nullable=True)

    intasend_wallet_id = db.Column(db.String(64), nullable=True, index=True)
    intasend_wallet_label = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "store_name": self.store_name or "",
            "store_description": self.store_description or "",
            "payout_method": self.payout_method or "mpesa",
            "mpesa_number": self.mpesa_number or "",
            "bank_name": self.bank_name or "",
            "bank_account_number": self.bank_account_number or "",
            "bank_account_name": self.bank_account_name or "",
            "intasend_wallet_id": self.intasend_wallet_id or "",
            "intasend_wallet_label": self.intasend_wallet_label or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
