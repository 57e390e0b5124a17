from __future__ import annotations

import json
import os
from datetime import datetime, timedelta

from app.extensions import db
from app.models import (
    Order,
    OrderItem,
    OrderShippingDetails,
    Payment,
    Product,
    User,
    VendorRating,
)
from app.services.errors import ServiceError
from app.services.escrow_service import EscrowTransitionError, hold_escrow, refresh_escrow_amounts, refund_escrow, release_escrow
from app.services.notification_service import dispatch
from app.utils.commission import compute_order_totals, round_ksh, to_decimal
from app.utils.events import log_event
from app.utils.phone import normalize_kenyan_phone


GATEWAYS = ("mpesa", "card", "paystack", "intasend")


class OrderStatus:
    PENDING_PAYMENT = "pending_payment"
    PENDING_VENDOR_CONFIRMATION = "pending_vendor_confirmation"
    ACCEPTED = "accepted"
    SHIPPED = "shipped"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED_BY_VENDOR = "cancelled_by_vendor"
    CANCELLED_BY_CUSTOMER = "cancelled_by_customer"
    CANCELLED_NO_SHIPMENT = "cancelled_no_shipment"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"

    DISPUTABLE = {ACCEPTED, SHIPPED, ARRIVED, DELIVERED}
    OTP_READY = {ACCEPTED, SHIPPED, ARRIVED}
    ALLOWED = {
        PENDING_PAYMENT: {PENDING_VENDOR_CONFIRMATION, PAYMENT_FAILED, CANCELLED_BY_CUSTOMER, CANCELLED_BY_VENDOR},
        PAYMENT_FAILED: {PENDING_VENDOR_CONFIRMATION, PAYMENT_FAILED, CANCELLED_BY_CUSTOMER},
        PENDING_VENDOR_CONFIRMATION: {ACCEPTED, CANCELLED_BY_VENDOR, CANCELLED_BY_CUSTOMER, REFUNDED},
        ACCEPTED: {SHIPPED, ARRIVED, COMPLETED, DISPUTED, CANCELLED_NO_SHIPMENT, REFUNDED},
        SHIPPED: {ARRIVED, DELIVERED, COMPLETED, DISPUTED, REFUNDED},
        ARRIVED: {DELIVERED, COMPLETED, DISPUTED, REFUNDED},
        DELIVERED: {COMPLETED, DISPUTED, REFUNDED},
        DISPUTED: {COMPLETED, REFUNDED},
        CANCELLED_BY_VENDOR: {REFUNDED},
        CANCELLED_BY_CUSTOMER: {REFUNDED},
        CANCELLED_NO_SHIPMENT: {REFUNDED},
        COMPLETED: set(),
        REFUNDED: set(),
    }


def auto_release_delay() -> timedelta:
    raw = (os.getenv("AUTO_RELEASE_DAYS") or "3").strip()
    try:
        days = int(raw)
    except ValueError:
        days = 3
    return timedelta(days=max(1, days))


def transition_order(order: Order, to_status: str) -> str:
    current = order.status or OrderStatus.PENDING_PAYMENT
    if to_status not in OrderStatus.ALLOWED.get(current, set()):
        raise ServiceError(
            "INVALID_STATUS_TRANSITION",
            f"Cannot move order from {current} to {to_status}",
            409,
            current_status=current,
        )
    order.status = to_status
    db.session.add(order)
    return current


def _actor(user: User | None) -> dict:
    if user is None:
        return {"type": "system", "id": None}
    return {"type": "admin" if user.is_admin else "user", "id": int(user.id)}


def require_vendor_access(order: Order, user: User) -> None:
    if user.is_admin or int(order.vendor_id) == int(user.id):
        return
    raise ServiceError("FORBIDDEN", "Only the vendor for this order can do that", 403)


def require_buyer(order: Order, user: User) -> None:
    if int(order.customer_id) != int(user.id):
        raise ServiceError("FORBIDDEN", "Only the buyer for this order can do that", 403)


def can_view(order: Order, user: User) -> bool:
    return bool(user.is_admin or int(order.customer_id) == int(user.id) or int(order.vendor_id) == int(user.id))


def serialize_order(order: Order, viewer: User) -> dict:
    return order.to_dict(include_otp=int(order.customer_id) == int(viewer.id))


def get_order_or_404(order_id: int) -> Order:
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise ServiceError("ORDER_NOT_FOUND", "Order not found", 404)
    return order


def primary_payment(order: Order) -> Payment | None:
    for payment in Payment.query.filter_by(order_id=int(order.id)).order_by(Payment.id.asc()).all():
        if not payment.is_delivery_fee:
            return payment
    return None


def delivery_fee_payments(order: Order) -> list[Payment]:
    return [p for p in Payment.query.filter_by(order_id=int(order.id)).all() if p.is_delivery_fee]


def captured_total(order: Order):
    total = round_ksh(0)
    for p in Payment.query.filter_by(order_id=int(order.id), status="captured").all():
        total += round_ksh(p.amount_ksh)
    return total


def _parse_items(raw_items) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ServiceError("EMPTY_CART", "At least one item is required", 400)
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ServiceError("INVALID_ITEM", "Each item must be an object", 400)
        try:
            product_id = int(raw.get("product_id"))
            quantity = int(raw.get("quantity") or 1)
        except (TypeError, ValueError):
            raise ServiceError("INVALID_ITEM", "product_id and quantity must be integers", 400)
        if quantity < 1:
            raise ServiceError("INVALID_ITEM", "quantity must be at least 1", 400)
        items.append({"product_id": product_id, "quantity": quantity, "size": str(raw.get("size") or "").strip()[:16] or None})
    return items


def _parse_shipping(raw: dict, delivery_type: str, buyer: User) -> dict:
    recipient = str(raw.get("recipient_name") or buyer.name or "").strip()
    phone = str(raw.get("phone") or buyer.phone or "").strip()
    if not recipient or not phone:
        raise ServiceError("SHIPPING_DETAILS_REQUIRED", "recipient_name and phone are required", 400)
    address = str(raw.get("address_line1") or "").strip()
    if delivery_type == "delivery" and not address:
        raise ServiceError("SHIPPING_DETAILS_REQUIRED", "address_line1 is required for delivery orders", 400)

    def _coord(key):
        try:
            return float(raw.get(key)) if raw.get(key) not in (None, "") else None
        except (TypeError, ValueError):
            return None

    return {
        "recipient_name": recipient[:160],
        "phone": phone[:32],
        "email": (str(raw.get("email") or buyer.email or "").strip() or None),
        "address_line1": address or None,
        "address_line2": str(raw.get("address_line2") or "").strip() or None,
        "city": str(raw.get("city") or "").strip() or None,
        "county": str(raw.get("county") or "").strip() or None,
        "postal_code": str(raw.get("postal_code") or "").strip() or None,
        "country": str(raw.get("country") or "").strip() or "Kenya",
        "delivery_notes": str(raw.get("delivery_notes") or "").strip() or None,
        "delivery_type": delivery_type,
        "gps_latitude": _coord("gps_latitude"),
        "gps_longitude": _coord("gps_longitude"),
    }


def create_order(buyer: User, payload: dict) -> Order:
    """Create the order, its items, shipping details, pending payment and held escrow in one commit."""
    items = _parse_items(payload.get("items"))
    delivery_type = str(payload.get("delivery_type") or (payload.get("shipping") or {}).get("delivery_type") or "delivery").strip().lower()
    if delivery_type not in ("delivery", "pickup"):
        raise ServiceError("INVALID_DELIVERY_TYPE", "delivery_type must be delivery or pickup", 400)
    gateway = str(payload.get("payment_gateway") or "mpesa").strip().lower()
    if gateway not in GATEWAYS:
        raise ServiceError("INVALID_GATEWAY", f"payment_gateway must be one of {', '.join(GATEWAYS)}", 400)
    shipping_raw = payload.get("shipping") if isinstance(payload.get("shipping"), dict) else {}
    shipping = _parse_shipping(shipping_raw, delivery_type, buyer)
    shipping_fee = to_decimal(payload.get("shipping_fee_ksh") or 0)
    if shipping_fee < 0:
        raise ServiceError("INVALID_SHIPPING_FEE", "shipping_fee_ksh cannot be negative", 400)
    if delivery_type == "pickup":
        shipping_fee = to_decimal(0)

    products = {}
    for item in items:
        product = db.session.get(Product, item["product_id"])
        if product is None:
            raise ServiceError("PRODUCT_NOT_FOUND", f"Product {item['product_id']} not found", 404)
        products[item["product_id"]] = product
    vendor_ids = {int(p.vendor_id) for p in products.values()}
    if len(vendor_ids) != 1:
        raise ServiceError("MULTI_VENDOR_CART", "All items in an order must come from one vendor", 400)

    wanted: dict[int, int] = {}
    for item in items:
        wanted[item["product_id"]] = wanted.get(item["product_id"], 0) + item["quantity"]
    for product_id, qty in wanted.items():
        product = products[product_id]
        if (product.status or "") != "active" or int(product.stock or 0) < qty:
            raise ServiceError(
                "INSUFFICIENT_STOCK",
                f"{product.name} is not available in the requested quantity",
                409,
                product_id=product_id,
                available=int(product.stock or 0) if (product.status or "") == "active" else 0,
            )

    subtotal = sum((round_ksh(products[i["product_id"]].price_ksh) * i["quantity"] for i in items), round_ksh(0))
    totals = compute_order_totals(subtotal, shipping_fee)

    try:
        order = Order(
            customer_id=int(buyer.id),
            vendor_id=vendor_ids.pop(),
            status=OrderStatus.PENDING_PAYMENT,
            **totals,
        )
        db.session.add(order)
        db.session.flush()
        for item in items:
            product = products[item["product_id"]]
            db.session.add(
                OrderItem(
                    order_id=int(order.id),
                    product_id=int(product.id),
                    product_name=product.name,
                    product_snapshot=json.dumps(product.snapshot(), default=str),
                    quantity=item["quantity"],
                    unit_price_ksh=float(round_ksh(product.price_ksh)),
                    size=item["size"],
                )
            )
        db.session.add(OrderShippingDetails(order_id=int(order.id), **shipping))
        payment = Payment(
            order_id=int(order.id),
            gateway=gateway,
            status="pending",
            amount_ksh=totals["total_ksh"],
            currency="KES",
        )
        db.session.add(payment)
        db.session.flush()
        hold_escrow(order, payment, actor=_actor(buyer))
        log_event(
            "order_placed",
            actor_user_id=int(buyer.id),
            order_id=int(order.id),
            idempotency_key=f"order:{int(order.id)}:placed",
            metadata={"total_ksh": totals["total_ksh"], "gateway": gateway, "items": len(items)},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    vendor = db.session.get(User, int(order.vendor_id))
    dispatch("vendor_new_order", vendor, order=order)
    dispatch("buyer_order_placed", buyer, order=order)
    return order


def accept_order(order: Order, user: User) -> Order:
    require_vendor_access(order, user)
    if primary_payment(order) is None:
        raise ServiceError("PAYMENT_NOT_FOUND", "Order has no payment yet", 409)
    transition_order(order, OrderStatus.ACCEPTED)
    order.accepted_at = datetime.utcnow()
    log_event("order_accepted", actor_user_id=int(user.id), order_id=int(order.id), idempotency_key=f"order:{int(order.id)}:accepted")
    db.session.commit()
    dispatch("buyer_order_accepted", db.session.get(User, int(order.customer_id)), order=order)
    return order


def decline_order(order: Order, user: User, *, reason: str = "") -> dict:
    """Vendor declines; escrow is refunded and a captured payment goes through the refund flow."""
    require_vendor_access(order, user)
    reason = (reason or "").strip()
    transition_order(order, OrderStatus.CANCELLED_BY_VENDOR)
    order.cancelled_at = datetime.utcnow()
    order.vendor_notes = reason or order.vendor_notes
    refund_escrow(order, actor=_actor(user), reason=reason or "vendor_declined")
    log_event("order_declined", actor_user_id=int(user.id), order_id=int(order.id), idempotency_key=f"order:{int(order.id)}:declined", metadata={"reason": reason})
    db.session.commit()

    refund = None
    payment = primary_payment(order)
    if payment is not None and payment.status == "captured":
        from app.services.payment_service import process_refund

        try:
            refund = process_refund(order, reason="vendor_declined", actor=user)
        except (ServiceError, RuntimeError) as e:
            db.session.rollback()
            refund = {"ok": False, "error": getattr(e, "code", None) or str(e)}
    dispatch(
        "buyer_order_declined",
        db.session.get(User, int(order.customer_id)),
        order=order,
        context={"reason": reason, "decline_label": "Cancelled by Vendor", "decline_title": "Order Declined"},
    )
    return {"order": order, "refund": refund}


def set_shipping_fee(order: Order, user: User, fee) -> Order:
    require_vendor_access(order, user)
    if order.status != OrderStatus.ACCEPTED:
        raise ServiceError("INVALID_STATUS_TRANSITION", "Shipping fee can only be set on accepted orders", 409, current_status=order.status)
    value = to_decimal(fee)
    if value < 0:
        raise ServiceError("INVALID_SHIPPING_FEE", "shipping_fee_ksh cannot be negative", 400)
    totals = compute_order_totals(order.subtotal_ksh, value, rate=to_decimal(order.commission_rate))
    for key, amount in totals.items():
        setattr(order, key, amount)
    refresh_escrow_amounts(order)
    db.session.commit()
    return order


def ship_order(order: Order, user: User, *, courier_name: str, tracking_number: str, vendor_notes: str = "") -> Order:
    require_vendor_access(order, user)
    courier_name = (courier_name or "").strip()
    tracking_number = (tracking_number or "").strip()
    if not courier_name or not tracking_number:
        raise ServiceError("SHIPPING_DETAILS_REQUIRED", "courier_name and tracking_number are required", 400)
    if not order.is_pickup and to_decimal(order.shipping_fee_ksh) > 0:
        if any(p.status != "captured" for p in delivery_fee_payments(order)):
            raise ServiceError("DELIVERY_FEE_PENDING", "The delivery fee has not been paid yet", 409)
    remaining = round_ksh(order.total_ksh) - captured_total(order)
    if remaining > 0:
        raise ServiceError("PAYMENT_INCOMPLETE", "The order has not been fully paid", 409, remaining_ksh=float(remaining))

    transition_order(order, OrderStatus.SHIPPED)
    now = datetime.utcnow()
    order.shipped_at = now
    order.vendor_confirmed = True
    order.auto_release_at = now + auto_release_delay()
    if vendor_notes:
        order.vendor_notes = vendor_notes.strip()
    if order.shipping is None:
        order.shipping = OrderShippingDetails(order_id=int(order.id), recipient_name="")
    order.shipping.courier_name = courier_name[:120]
    order.shipping.tracking_number = tracking_number[:120]
    log_event(
        "order_shipped",
        actor_user_id=int(user.id),
        order_id=int(order.id),
        idempotency_key=f"order:{int(order.id)}:shipped",
        metadata={"courier": courier_name, "tracking_number": tracking_number},
    )
    db.session.commit()
    dispatch("buyer_order_shipped", db.session.get(User, int(order.customer_id)), order=order)
    return order


def mark_pickup_ready(order: Order, user: User) -> Order:
    require_vendor_access(order, user)
    if not order.is_pickup:
        raise ServiceError("NOT_PICKUP_ORDER", "Only pickup orders can be marked ready for pickup", 409)
    transition_order(order, OrderStatus.ARRIVED)
    order.arrived_at = datetime.utcnow()
    order.vendor_confirmed = True
    db.session.commit()
    dispatch("buyer_pickup_ready", db.session.get(User, int(order.customer_id)), order=order)
    return order


def mark_arrived(order: Order, user: User) -> Order:
    require_vendor_access(order, user)
    if order.status != OrderStatus.SHIPPED:
        raise ServiceError("INVALID_STATUS_TRANSITION", "Only shipped orders can be marked arrived", 409, current_status=order.status)
    transition_order(order, OrderStatus.ARRIVED)
    now = datetime.utcnow()
    order.arrived_at = now
    if order.shipping is not None:
        order.shipping.stop_tracking(now)
    if order.auto_release_at is None:
        order.auto_release_at = now + auto_release_delay()
    db.session.commit()
    dispatch("buyer_order_arrived", db.session.get(User, int(order.customer_id)), order=order)
    return order


def cancel_order(order: Order, user: User, *, reason: str = "") -> Order:
    require_buyer(order, user)
    if order.status not in (OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING_VENDOR_CONFIRMATION):
        raise ServiceError("ORDER_NOT_CANCELLABLE", "Orders can only be cancelled before the vendor accepts them", 409, current_status=order.status)
    transition_order(order, OrderStatus.CANCELLED_BY_CUSTOMER)
    order.cancelled_at = datetime.utcnow()
    refund_escrow(order, actor=_actor(user), reason=(reason or "cancelled_by_customer")[:240])
    log_event("order_cancelled", actor_user_id=int(user.id), order_id=int(order.id), idempotency_key=f"order:{int(order.id)}:cancelled", metadata={"reason": reason})
    db.session.commit()
    return order


def decrement_stock(order: Order) -> None:
    for item in order.items or []:
        if item.product_id is None:
            continue
        product = db.session.get(Product, int(item.product_id))
        if product is None:
            continue
        product.stock = max(0, int(product.stock or 0) - int(item.quantity or 0))
        db.session.add(product)


def complete_order(order: Order, *, actor: User | None = None, reason: str = "completed", buyer_confirmed: bool = False, vendor_confirmed: bool = False):
    """Shared completion path: status, escrow release with settlement, stock. Does not commit."""
    transition_order(order, OrderStatus.COMPLETED)
    now = datetime.utcnow()
    order.completed_at = now
    if buyer_confirmed:
        order.buyer_confirmed = True
        order.confirmed_at = order.confirmed_at or now
    if vendor_confirmed:
        order.vendor_confirmed = True
    try:
        payout = release_escrow(order, actor=_actor(actor), reason=reason)
    except EscrowTransitionError as e:
        raise ServiceError("ESCROW_NOT_RELEASABLE", str(e), 409)
    decrement_stock(order)
    log_event(
        "order_completed",
        actor_user_id=int(actor.id) if actor is not None else None,
        order_id=int(order.id),
        idempotency_key=f"order:{int(order.id)}:completed",
        metadata={"reason": reason},
    )
    return payout


def confirm_order(order: Order, user: User, *, rating=None, review: str = "") -> Order:
    require_buyer(order, user)
    if order.status == OrderStatus.COMPLETED:
        raise ServiceError("ORDER_ALREADY_COMPLETED", "Order already completed", 409)
    score = None
    if rating not in (None, ""):
        try:
            score = int(rating)
        except (TypeError, ValueError):
            score = 0
        if score < 1 or score > 5:
            raise ServiceError("INVALID_RATING", "rating must be between 1 and 5", 400)
    try:
        complete_order(order, actor=user, reason="buyer_confirmed", buyer_confirmed=True)
        if score is not None and VendorRating.query.filter_by(order_id=int(order.id)).first() is None:
            db.session.add(
                VendorRating(
                    order_id=int(order.id),
                    vendor_id=int(order.vendor_id),
                    customer_id=int(user.id),
                    rating=score,
                    review=(review or "").strip() or None,
                )
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    dispatch("buyer_order_completed", user, order=order)
    return order


def list_buyer_orders(user: User, *, status: str | None = None) -> list[Order]:
    q = Order.query.filter_by(customer_id=int(user.id))
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def list_vendor_orders(user: User, *, status: str | None = None) -> list[Order]:
    q = Order.query.filter_by(vendor_id=int(user.id))
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def normalize_order_phone(order: Order) -> str:
    return normalize_kenyan_phone(order.shipping.phone if order.shipping else "")
