from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.extensions import db
from app.services.delivery_otp_service import generate_delivery_otp, verify_delivery_otp
from app.services.delivery_tracking_service import start_tracking, stop_tracking, tracking_view, update_location
from app.services.dispute_service import open_dispute
from app.services.order_service import (
    accept_order,
    can_view,
    cancel_order,
    confirm_order,
    create_order,
    decline_order,
    get_order_or_404,
    list_buyer_orders,
    list_vendor_orders,
    mark_arrived,
    mark_pickup_ready,
    serialize_order,
    set_shipping_fee,
    ship_order,
)
from app.utils.auth import current_user, is_vendor
from app.utils.idempotency import lookup_response, store_response
from app.utils.rate_limit import rate_limit

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


_INIT_DONE = False


@orders_bp.before_app_request
def _ensure_tables_once():
    global _INIT_DONE
    if _INIT_DONE:
        return
    db.create_all()
    _INIT_DONE = True


def _json() -> dict:
    return request.get_json(silent=True) or {}


def _order_response(order, user, status: int = 200, **extra):
    payload = {"ok": True, "order": serialize_order(order, user)}
    payload.update(extra)
    return jsonify(payload), status


@orders_bp.post("/orders")
@rate_limit("orders:create", 60, 20)
def place_order():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    payload = _json()
    idem = lookup_response(int(user.id), "orders:create", payload)
    if idem is not None and idem[0] in ("hit", "conflict"):
        return jsonify(idem[1]), idem[2]

    order = create_order(user, payload)
    body = {"ok": True, "order": serialize_order(order, user)}
    if idem is not None:
        store_response(idem[1], body, 201)
    return jsonify(body), 201


@orders_bp.get("/orders")
def my_orders():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    status = (request.args.get("status") or "").strip() or None
    items = [serialize_order(o, user) for o in list_buyer_orders(user, status=status)]
    return jsonify({"ok": True, "items": items}), 200


@orders_bp.get("/vendor/orders")
def vendor_orders():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    if not is_vendor(user):
        return jsonify({"message": "Vendor account required"}), 403
    status = (request.args.get("status") or "").strip() or None
    items = [serialize_order(o, user) for o in list_vendor_orders(user, status=status)]
    return jsonify({"ok": True, "items": items}), 200


@orders_bp.get("/orders/<int:order_id>")
def get_order(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = get_order_or_404(order_id)
    if not can_view(order, user):
        return jsonify({"message": "Forbidden"}), 403
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/accept")
def vendor_accept(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = accept_order(get_order_or_404(order_id), user)
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/decline")
def vendor_decline(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    result = decline_order(get_order_or_404(order_id), user, reason=str(_json().get("reason") or ""))
    return _order_response(result["order"], user, refund=result["refund"])


@orders_bp.post("/orders/<int:order_id>/shipping-fee")
def vendor_shipping_fee(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    if "shipping_fee_ksh" not in data:
        return jsonify({"ok": False, "error": "INVALID_SHIPPING_FEE", "message": "shipping_fee_ksh is required"}), 400
    order = set_shipping_fee(get_order_or_404(order_id), user, data.get("shipping_fee_ksh"))
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/ship")
def vendor_ship(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    order = ship_order(
        get_order_or_404(order_id),
        user,
        courier_name=str(data.get("courier_name") or ""),
        tracking_number=str(data.get("tracking_number") or ""),
        vendor_notes=str(data.get("vendor_notes") or ""),
    )
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/pickup-ready")
def vendor_pickup_ready(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = mark_pickup_ready(get_order_or_404(order_id), user)
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/arrived")
def vendor_arrived(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = mark_arrived(get_order_or_404(order_id), user)
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/cancel")
def buyer_cancel(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = cancel_order(get_order_or_404(order_id), user, reason=str(_json().get("reason") or ""))
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/confirm")
def buyer_confirm(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    order = confirm_order(get_order_or_404(order_id), user, rating=data.get("rating"), review=str(data.get("review") or ""))
    return _order_response(order, user)


@orders_bp.post("/orders/<int:order_id>/delivery-otp")
@rate_limit("orders:otp", 300, 5, scope="user")
def vendor_generate_otp(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = generate_delivery_otp(get_order_or_404(order_id), user, is_resend=bool(_json().get("resend")))
    return jsonify({"ok": True, "order_id": int(order.id), "otp_generated_at": order.otp_generated_at.isoformat()}), 200


@orders_bp.post("/orders/<int:order_id>/delivery-otp/verify")
def vendor_verify_otp(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    result = verify_delivery_otp(get_order_or_404(order_id), user, _json().get("otp"))
    payout = result["payout"]
    return _order_response(
        result["order"],
        user,
        payout=payout.to_dict() if payout is not None else None,
        wallet_transfer=result["wallet_transfer"],
    )


@orders_bp.post("/orders/<int:order_id>/dispute")
def buyer_dispute(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    evidence = data.get("evidence_urls")
    dispute = open_dispute(
        get_order_or_404(order_id),
        user,
        reason=str(data.get("reason") or ""),
        description=str(data.get("description") or ""),
        evidence_urls=evidence if isinstance(evidence, list) else None,
    )
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 201


@orders_bp.get("/orders/<int:order_id>/tracking")
def delivery_tracking(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    return jsonify({"ok": True, "tracking": tracking_view(get_order_or_404(order_id), user)}), 200


@orders_bp.post("/orders/<int:order_id>/tracking/start")
def vendor_start_tracking(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    order = get_order_or_404(order_id)
    start_tracking(order, user, latitude=data.get("latitude"), longitude=data.get("longitude"))
    return jsonify({"ok": True, "tracking": tracking_view(order, user)}), 200


@orders_bp.post("/orders/<int:order_id>/tracking/location")
@rate_limit("orders:tracking", 60, 30, scope="user")
def vendor_update_location(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = _json()
    order = get_order_or_404(order_id)
    update_location(order, user, latitude=data.get("latitude"), longitude=data.get("longitude"))
    return jsonify({"ok": True, "tracking": tracking_view(order, user)}), 200


@orders_bp.post("/orders/<int:order_id>/tracking/stop")
def vendor_stop_tracking(order_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    order = get_order_or_404(order_id)
    stop_tracking(order, user)
    return jsonify({"ok": True, "tracking": tracking_view(order, user)}), 200
