from __future__ import annotations

import hmac
import json
import re
import secrets
from datetime import datetime

from flask import current_app

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.models import Order, User, VendorProfile
from app.services.errors import ServiceError
from app.services.notification_service import dispatch
from app.services.order_service import OrderStatus, complete_order, require_vendor_access
from app.utils.events import log_event
from app.utils.task_queue import enqueue


OTP_PATTERN = re.compile(r"^\d{6}$")
MAX_OTP_ATTEMPTS = 5


def _new_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def generate_delivery_otp(order: Order, user: User, *, is_resend: bool = False) -> Order:
    """Issue a fresh handover code for the buyer. The code is only sent to the buyer."""
    require_vendor_access(order, user)
    if order.status not in OrderStatus.OTP_READY:
        raise ServiceError("OTP_NOT_AVAILABLE", "A delivery code can only be issued for accepted, shipped or arrived orders", 409, current_status=order.status)
    code = _new_code()
    order.delivery_otp = code
    order.otp_generated_at = datetime.utcnow()
    order.otp_verified_at = None
    order.otp_attempts = 0
    log_event(
        "delivery_otp_generated",
        actor_user_id=int(user.id),
        order_id=int(order.id),
        metadata={"is_resend": bool(is_resend)},
    )
    db.session.commit()
    dispatch(
        "buyer_delivery_otp",
        db.session.get(User, int(order.customer_id)),
        order=order,
        context={"otp": code, "otp_subject": "Your New Delivery Code" if is_resend else "Your Delivery Code", "is_resend": bool(is_resend)},
    )
    return order


def _queue_wallet_transfer(order: Order) -> str | None:
    profile = VendorProfile.query.filter_by(user_id=int(order.vendor_id)).first()
    if profile is None or not profile.intasend_wallet_id:
        return None
    from app.services.payout_service import transfer_to_vendor_wallet
    from app.tasks.scale_tasks import transfer_to_vendor_wallet_task

    try:
        return enqueue(transfer_to_vendor_wallet_task, transfer_to_vendor_wallet, order_id=int(order.id))
    except (IntegrationDisabledError, IntegrationMisconfiguredError, RuntimeError, ServiceError) as e:
        db.session.rollback()
        current_app.logger.warning(json.dumps({"event": "wallet_transfer_failed", "order_id": int(order.id), "error": str(e)}))
        return None


def verify_delivery_otp(order: Order, user: User, otp) -> dict:
    require_vendor_access(order, user)
    code = str(otp or "").strip()
    if not OTP_PATTERN.match(code):
        raise ServiceError("INVALID_OTP_FORMAT", "otp must be 6 digits", 400)
    if order.status == OrderStatus.COMPLETED:
        raise ServiceError("ORDER_ALREADY_COMPLETED", "Order already completed", 409)
    if not order.delivery_otp:
        raise ServiceError("OTP_NOT_GENERATED", "No delivery code has been generated for this order", 409)
    if order.otp_verified_at is not None:
        raise ServiceError("OTP_ALREADY_VERIFIED", "Delivery code already verified", 409)
    attempts = int(order.otp_attempts or 0)
    if attempts >= MAX_OTP_ATTEMPTS:
        raise ServiceError("OTP_LOCKED", "Too many failed attempts. Generate a new code.", 429)

    if not hmac.compare_digest(code, str(order.delivery_otp)):
        order.otp_attempts = attempts + 1
        db.session.commit()
        raise ServiceError(
            "OTP_MISMATCH",
            "Delivery code does not match",
            400,
            attempts_remaining=max(0, MAX_OTP_ATTEMPTS - int(order.otp_attempts)),
        )

    try:
        payout = complete_order(order, actor=user, reason="delivery_otp_verified", buyer_confirmed=True, vendor_confirmed=True)
        order.otp_verified_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    transfer = _queue_wallet_transfer(order)
    dispatch("buyer_order_completed", db.session.get(User, int(order.customer_id)), order=order)
    return {"order": order, "payout": payout, "wallet_transfer": transfer}
