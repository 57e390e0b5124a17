from __future__ import annotations

import json

from flask import Blueprint, jsonify, request, current_app

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.services.order_service import get_order_or_404, require_buyer
from app.services.payment_service import (
    create_delivery_fee_payment,
    create_intasend_checkout,
    create_stripe_intent,
    initialize_paystack,
    start_mpesa_stk_push,
)
from app.utils.auth import current_user
from app.utils.observability import get_request_id
from app.utils.rate_limit import rate_limit

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")

_INIT_DONE = False


@payments_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    db.create_all()
    _INIT_DONE = True


def _provider_failed(gateway: str, order_id: int, e: RuntimeError):
    db.session.rollback()
    code, _, detail = str(e).partition(":")
    current_app.logger.warning(
        json.dumps({"event": "payment_provider_failed", "gateway": gateway, "order_id": int(order_id), "error": code, "trace_id": get_request_id()})
    )
    return jsonify({"ok": False, "error": code or "PROVIDER_ERROR", "message": detail or "Payment provider request failed"}), 502


def _buyer_order(user, data: dict):
    try:
        order_id = int(data.get("order_id"))
    except (TypeError, ValueError):
        return None
    order = get_order_or_404(order_id)
    require_buyer(order, user)
    return order


@payments_bp.post("/mpesa/stk-push")
@rate_limit("payments:stk", 60, 5, scope="user")
def mpesa_stk_push():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    order = _buyer_order(user, data)
    if order is None:
        return jsonify({"ok": False, "error": "INVALID_ORDER", "message": "order_id is required"}), 400
    try:
        result = start_mpesa_stk_push(order, user, phone=str(data.get("phone") or ""))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        return _provider_failed("mpesa", int(order.id), e)
    return jsonify({"ok": True, **result}), 200


@payments_bp.post("/paystack/initialize")
@rate_limit("payments:paystack", 60, 10, scope="user")
def paystack_initialize():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    order = _buyer_order(user, data)
    if order is None:
        return jsonify({"ok": False, "error": "INVALID_ORDER", "message": "order_id is required"}), 400
    try:
        result = initialize_paystack(order, user, email=str(data.get("email") or ""))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        return _provider_failed("paystack", int(order.id), e)
    return jsonify({"ok": True, **result}), 200


@payments_bp.post("/stripe/intent")
@rate_limit("payments:stripe", 60, 10, scope="user")
def stripe_intent():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    order = _buyer_order(user, data)
    if order is None:
        return jsonify({"ok": False, "error": "INVALID_ORDER", "message": "order_id is required"}), 400
    try:
        result = create_stripe_intent(order, user)
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        return _provider_failed("card", int(order.id), e)
    return jsonify({"ok": True, **result}), 200


@payments_bp.post("/intasend/checkout")
@rate_limit("payments:intasend", 60, 10, scope="user")
def intasend_checkout():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    order = _buyer_order(user, data)
    if order is None:
        return jsonify({"ok": False, "error": "INVALID_ORDER", "message": "order_id is required"}), 400
    try:
        result = create_intasend_checkout(order, user, redirect_url=str(data.get("redirect_url") or ""))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        return _provider_failed("intasend", int(order.id), e)
    return jsonify({"ok": True, **result}), 200


@payments_bp.post("/delivery-fee")
@rate_limit("payments:delivery_fee", 60, 5, scope="user")
def delivery_fee():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    try:
        order_id = int(data.get("order_id"))
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": "INVALID_ORDER", "message": "order_id is required"}), 400
    order = get_order_or_404(order_id)
    gateway = str(data.get("gateway") or "").strip().lower()
    try:
        result = create_delivery_fee_payment(order, user, amount=data.get("amount", data.get("amount_ksh")), gateway=gateway, phone=str(data.get("phone") or ""))
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        return _provider_failed(gateway or "unknown", int(order.id), e)
    return jsonify({"ok": True, **result}), 201
