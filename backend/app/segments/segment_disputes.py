from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.extensions import db
from app.services.dispute_service import get_dispute_or_404, list_user_disputes, respond_to_dispute
from app.utils.auth import current_user

disputes_bp = Blueprint("disputes_bp", __name__, url_prefix="/api/disputes")

_INIT_DONE = False


@disputes_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    db.create_all()
    _INIT_DONE = True


@disputes_bp.get("")
def my_disputes():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "items": [d.to_dict() for d in list_user_disputes(user)]}), 200


@disputes_bp.get("/<int:dispute_id>")
def get_dispute(dispute_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    dispute = get_dispute_or_404(dispute_id)
    if not user.is_admin and int(user.id) not in (int(dispute.customer_id), int(dispute.vendor_id)):
        return jsonify({"message": "Forbidden"}), 403
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


@disputes_bp.post("/<int:dispute_id>/respond")
def respond(dispute_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    dispute = respond_to_dispute(get_dispute_or_404(dispute_id), user, response=str(data.get("response") or ""))
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200
