from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.models import VendorProfile
from app.services.payout_service import (
    create_vendor_wallet,
    request_manual_payout,
    vendor_balance_summary,
    withdraw_to_mpesa,
)
from app.utils.auth import current_user, is_vendor
from app.utils.phone import normalize_kenyan_phone
from app.utils.rate_limit import rate_limit

vendor_bp = Blueprint("vendor_bp", __name__, url_prefix="/api/vendor")

_INIT_DONE = False

_TEXT_FIELDS = {
    "store_name": 160,
    "store_description": 2000,
    "bank_name": 120,
    "bank_account_number": 64,
    "bank_account_name": 120,
}


@vendor_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    db.create_all()
    _INIT_DONE = True


def _vendor():
    user = current_user()
    if not user:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_vendor(user):
        return None, (jsonify({"message": "Vendor account required"}), 403)
    return user, None


@vendor_bp.get("/profile")
def get_profile():
    user, err = _vendor()
    if err:
        return err
    profile = VendorProfile.query.filter_by(user_id=int(user.id)).first()
    return jsonify({"ok": True, "profile": profile.to_dict() if profile else None}), 200


@vendor_bp.patch("/profile")
def update_profile():
    user, err = _vendor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    profile = VendorProfile.query.filter_by(user_id=int(user.id)).first()
    if profile is None:
        profile = VendorProfile(user_id=int(user.id), store_name=user.name or "")
    for key, limit in _TEXT_FIELDS.items():
        if key in data:
            setattr(profile, key, str(data.get(key) or "").strip()[:limit] or None)
    if "store_name" in data and not profile.store_name:
        return jsonify({"message": "store_name cannot be empty"}), 400
    if "payout_method" in data:
        method = str(data.get("payout_method") or "").strip().lower()
        if method not in ("mpesa", "bank"):
            return jsonify({"message": "payout_method must be mpesa or bank"}), 400
        profile.payout_method = method
    if "mpesa_number" in data:
        raw = str(data.get("mpesa_number") or "").strip()
        normalized = normalize_kenyan_phone(raw)
        if raw and len(normalized) != 12:
            return jsonify({"message": "mpesa_number must be a valid Kenyan number"}), 400
        profile.mpesa_number = normalized or None
    db.session.add(profile)
    db.session.commit()
    return jsonify({"ok": True, "profile": profile.to_dict()}), 200


@vendor_bp.get("/balance")
def balance():
    user, err = _vendor()
    if err:
        return err
    return jsonify({"ok": True, **vendor_balance_summary(int(user.id))}), 200


@vendor_bp.post("/payouts/request")
@rate_limit("vendor:payout_request", 3600, 5, scope="user")
def payout_request():
    user, err = _vendor()
    if err:
        return err
    payout = request_manual_payout(int(user.id))
    return jsonify({"ok": True, "payout": payout.to_dict()}), 201


@vendor_bp.post("/withdraw")
@rate_limit("vendor:withdraw", 3600, 5, scope="user")
def withdraw():
    user, err = _vendor()
    if err:
        return err
    try:
        result = withdraw_to_mpesa(int(user.id))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        db.session.rollback()
        code, _, detail = str(e).partition(":")
        return jsonify({"ok": False, "error": code or "PROVIDER_ERROR", "message": detail or "Withdrawal failed"}), 502
    return jsonify({"ok": True, **result}), 200


@vendor_bp.post("/wallet")
def wallet():
    user, err = _vendor()
    if err:
        return err
    try:
        profile = create_vendor_wallet(int(user.id))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        db.session.rollback()
        code, _, detail = str(e).partition(":")
        return jsonify({"ok": False, "error": code or "PROVIDER_ERROR", "message": detail or "Wallet creation failed"}), 502
    return jsonify({"ok": True, "wallet_id": profile.intasend_wallet_id, "label": profile.intasend_wallet_label}), 200
