from __future__ import annotations

import hashlib
import json
import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.payments.factory import (
    build_intasend_provider,
    build_mpesa_provider,
    build_paystack_provider,
    build_stripe_provider,
)
from app.models import Order, Payment, User, WebhookEvent
from app.services.errors import ServiceError
from app.services.escrow_service import EscrowTransitionError, hold_escrow, refresh_escrow_amounts, refund_escrow
from app.services.notification_service import dispatch
from app.services.order_service import OrderStatus, primary_payment, transition_order
from app.utils.commission import ksh_float, to_decimal
from app.utils.events import log_event
from app.utils.observability import get_request_id
from app.utils.phone import normalize_kenyan_phone
from app.utils.platform_settings import get_settings


AWAITING_PAYMENT = (OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED)
CHARGEBACK_REASONS = {
    "no_delivery": "Delayed delivery",
    "wrong_item": "Wrong service",
}


def _require_payable(order: Order) -> Payment:
    if order.status not in AWAITING_PAYMENT:
        raise ServiceError("ORDER_NOT_AWAITING_PAYMENT", "Order is not awaiting payment", 409, current_status=order.status)
    payment = primary_payment(order)
    if payment is None:
        payment = Payment(order_id=int(order.id), status="pending", amount_ksh=ksh_float(order.total_ksh), currency="KES")
        db.session.add(payment)
        db.session.flush()
    if payment.status == "captured":
        raise ServiceError("ALREADY_PAID", "Order is already paid", 409)
    return payment


def _valid_phone(phone: str) -> str:
    normalized = normalize_kenyan_phone(phone)
    if len(normalized) != 12:
        raise ServiceError("INVALID_PHONE", "A valid Kenyan phone number is required", 400)
    return normalized


# ---------------------------------------------------------------------------
# Capture / failure
# ---------------------------------------------------------------------------

def capture_payment(payment: Payment, *, transaction_id: str | None = None, source: str = "") -> dict:
    """Mark a payment captured and move the order forward. Commits."""
    order = db.session.get(Order, int(payment.order_id))
    if payment.status == "captured":
        return {"captured": False, "duplicate": True, "order": order}
    if payment.status in ("refunded", "chargeback"):
        raise ServiceError("PAYMENT_NOT_CAPTURABLE", f"Payment is {payment.status}", 409)

    payment.status = "captured"
    payment.captured_at = datetime.utcnow()
    if transaction_id:
        payment.transaction_id = str(transaction_id)[:128]
    db.session.add(payment)

    moved = False
    if payment.is_delivery_fee:
        refresh_escrow_amounts(order)
    else:
        if order.status in AWAITING_PAYMENT:
            transition_order(order, OrderStatus.PENDING_VENDOR_CONFIRMATION)
            moved = True
        hold_escrow(order, payment)
    log_event(
        "payment_captured",
        order_id=int(order.id),
        request_id=get_request_id(),
        idempotency_key=f"payment:{int(payment.id)}:captured",
        metadata={"gateway": payment.gateway, "amount_ksh": payment.amount_ksh, "source": source, "delivery_fee": payment.is_delivery_fee},
    )
    db.session.commit()

    if moved:
        dispatch("vendor_new_order", db.session.get(User, int(order.vendor_id)), order=order, context={"paid": True})
    return {"captured": True, "duplicate": False, "order": order}


def fail_payment(payment: Payment, *, reason: str = "", mark_order: bool = True) -> Payment:
    if payment.status in ("captured", "refunded", "chargeback"):
        return payment
    payment.status = "failed"
    payment.update_meta(failure_reason=(reason or "")[:240])
    db.session.add(payment)
    order = db.session.get(Order, int(payment.order_id))
    if mark_order and not payment.is_delivery_fee and order is not None and order.status == OrderStatus.PENDING_PAYMENT:
        transition_order(order, OrderStatus.PAYMENT_FAILED)
    log_event(
        "payment_failed",
        order_id=int(payment.order_id),
        severity="WARN",
        request_id=get_request_id(),
        idempotency_key=f"payment:{int(payment.id)}:failed:{payment.transaction_reference or ''}",
        metadata={"gateway": payment.gateway, "reason": reason},
    )
    db.session.commit()
    return payment


# ---------------------------------------------------------------------------
# Initiation
# ---------------------------------------------------------------------------

def start_mpesa_stk_push(order: Order, user: User, *, phone: str) -> dict:
    normalized = _valid_phone(phone)
    payment = _require_payable(order)
    provider = build_mpesa_provider(get_settings())
    result = provider.stk_push(
        phone=normalized,
        amount=payment.amount_ksh,
        account_reference=f"ORDER-{int(order.id)}",
        description=f"Sole-ly order {int(order.id)}",
    )
    payment.gateway = "mpesa"
    payment.status = "pending"
    payment.transaction_reference = result.checkout_request_id
    payment.update_meta(phone=normalized, merchant_request_id=result.merchant_request_id)
    db.session.add(payment)
    db.session.commit()
    return {
        "payment": payment.to_dict(),
        "checkout_request_id": result.checkout_request_id,
        "merchant_request_id": result.merchant_request_id,
    }


def initialize_paystack(order: Order, user: User, *, email: str = "") -> dict:
    payment = _require_payable(order)
    email = (email or user.email or (order.shipping.email if order.shipping else "") or "").strip()
    if not email:
        raise ServiceError("EMAIL_REQUIRED", "An email address is required for Paystack", 400)
    reference = f"order-{int(order.id)}-{secrets.token_hex(4)}"
    provider = build_paystack_provider(get_settings())
    result = provider.initialize(
        order_id=int(order.id),
        amount=payment.amount_ksh,
        email=email,
        reference=reference,
        metadata={"order_id": int(order.id), "payment_id": int(payment.id)},
    )
    payment.gateway = "paystack"
    payment.status = "pending"
    payment.transaction_reference = result.reference or reference
    db.session.add(payment)
    db.session.commit()
    return {"payment": payment.to_dict(), "authorization_url": result.authorization_url, "reference": payment.transaction_reference}


def create_stripe_intent(order: Order, user: User, *, payment: Payment | None = None) -> dict:
    if payment is None:
        payment = _require_payable(order)
    provider = build_stripe_provider(get_settings())
    reference = (payment.transaction_reference or "").strip()
    if payment.gateway == "card" and payment.status == "pending" and reference.startswith("pi_"):
        intent = provider.retrieve_intent(reference)
        if intent.status not in ("canceled", "succeeded"):
            return {"payment": payment.to_dict(), "client_secret": intent.client_secret, "intent_id": intent.intent_id, "reused": True}
    intent = provider.create_intent(
        amount_ksh=payment.amount_ksh,
        order_id=int(order.id),
        metadata={"payment_id": int(payment.id), "is_delivery_fee": int(payment.is_delivery_fee)},
    )
    payment.gateway = "card"
    payment.status = "pending"
    payment.transaction_reference = intent.intent_id
    payment.update_meta(amount_usd_cents=intent.amount_cents)
    db.session.add(payment)
    db.session.commit()
    return {"payment": payment.to_dict(), "client_secret": intent.client_secret, "intent_id": intent.intent_id, "reused": False}


def create_intasend_checkout(order: Order, user: User, *, redirect_url: str = "") -> dict:
    payment = _require_payable(order)
    shipping = order.shipping
    full_name = ((shipping.recipient_name if shipping else "") or user.name or "").strip()
    first_name, _, last_name = full_name.partition(" ")
    provider = build_intasend_provider(get_settings())
    result = provider.checkout(
        order_id=int(order.id),
        amount=payment.amount_ksh,
        email=(user.email or (shipping.email if shipping else "") or "").strip(),
        first_name=first_name or "Customer",
        last_name=last_name.strip() or first_name or "Customer",
        phone=normalize_kenyan_phone(shipping.phone if shipping else user.phone or ""),
        redirect_url=redirect_url,
    )
    payment.gateway = "intasend"
    payment.status = "pending"
    payment.transaction_reference = str(int(order.id))
    payment.update_meta(checkout_id=result.checkout_id)
    db.session.add(payment)
    db.session.commit()
    return {"payment": payment.to_dict(), "url": result.url, "checkout_id": result.checkout_id}


def create_delivery_fee_payment(order: Order, user: User, *, amount, gateway: str, phone: str = "") -> dict:
    if int(order.customer_id) != int(user.id):
        raise ServiceError("FORBIDDEN", "Only the buyer can pay the delivery fee", 403)
    if order.status not in (OrderStatus.PENDING_VENDOR_CONFIRMATION, OrderStatus.ACCEPTED):
        raise ServiceError("INVALID_STATUS_TRANSITION", "Delivery fee can only be paid before shipping", 409, current_status=order.status)
    value = to_decimal(amount)
    if value <= 0:
        raise ServiceError("INVALID_AMOUNT", "amount must be greater than 0", 400)
    gateway = (gateway or "").strip().lower()
    if gateway not in ("card", "mpesa"):
        raise ServiceError("UNSUPPORTED_GATEWAY", "Delivery fees can be paid by card or mpesa", 400)
    normalized = _valid_phone(phone) if gateway == "mpesa" else ""

    original = primary_payment(order)
    payment = Payment(order_id=int(order.id), gateway=gateway, status="pending", amount_ksh=ksh_float(value), currency="KES")
    payment.update_meta(is_delivery_fee=True, original_payment_id=int(original.id) if original else None)
    db.session.add(payment)
    db.session.flush()

    settings = get_settings()
    out = {}
    if gateway == "card":
        intent = build_stripe_provider(settings).create_intent(
            amount_ksh=payment.amount_ksh,
            order_id=int(order.id),
            metadata={"payment_id": int(payment.id), "is_delivery_fee": 1},
        )
        payment.transaction_reference = intent.intent_id
        out = {"client_secret": intent.client_secret, "intent_id": intent.intent_id}
    else:
        result = build_mpesa_provider(settings).stk_push(
            phone=normalized,
            amount=payment.amount_ksh,
            account_reference=f"DELIVERY-{int(order.id)}",
            description=f"Delivery fee for order {int(order.id)}",
        )
        payment.transaction_reference = result.checkout_request_id
        payment.update_meta(phone=normalized)
        out = {"checkout_request_id": result.checkout_request_id}
    db.session.commit()
    out["payment"] = payment.to_dict()
    return out


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------

def process_refund(order: Order, *, reason: str = "other", actor: User | None = None) -> dict:
    """Refund the order's first payment and settle order and escrow as refunded. Commits."""
    payment = primary_payment(order)
    if payment is None:
        raise ServiceError("PAYMENT_NOT_FOUND", "Order has no payment", 404)
    if payment.status == "refunded":
        return {"ok": True, "already_refunded": True, "payment": payment.to_dict()}
    if not (payment.transaction_id or "").strip():
        raise ServiceError("MISSING_TRANSACTION_ID", "Payment has no provider transaction id to refund", 400)

    mode = "manual"
    reference = None
    if payment.gateway == "intasend":
        provider = build_intasend_provider(get_settings())
        result = provider.chargeback(
            invoice=payment.transaction_id,
            amount=payment.amount_ksh,
            reason=CHARGEBACK_REASONS.get((reason or "").strip().lower(), "Other"),
        )
        mode = "chargeback"
        reference = result.reference

    actor_ref = {"type": "admin" if (actor and actor.is_admin) else ("user" if actor else "system"), "id": int(actor.id) if actor else None}
    try:
        now = datetime.utcnow()
        payment.status = "refunded"
        payment.refunded_at = now
        payment.update_meta(refund_mode=mode, refund_reference=reference, refund_reason=reason)
        db.session.add(payment)
        if order.status != OrderStatus.REFUNDED:
            transition_order(order, OrderStatus.REFUNDED)
        order.refunded_at = now
        refund_escrow(order, actor=actor_ref, reason=reason or "refunded")
        log_event(
            "order_refunded",
            actor_user_id=actor_ref["id"],
            order_id=int(order.id),
            request_id=get_request_id(),
            idempotency_key=f"order:{int(order.id)}:refunded",
            metadata={"mode": mode, "reason": reason, "reference": reference},
        )
        db.session.commit()
    except EscrowTransitionError as e:
        db.session.rollback()
        raise ServiceError("ESCROW_NOT_REFUNDABLE", str(e), 409)
    except Exception:
        db.session.rollback()
        raise
    return {"ok": True, "mode": mode, "reference": reference, "payment": payment.to_dict()}


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

def _payload_hash(raw) -> str:
    if isinstance(raw, (dict, list)):
        raw = json.dumps(raw, sort_keys=True, default=str)
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    return hashlib.sha256(raw or b"").hexdigest()


def claim_webhook(provider: str, event_id: str, *, event_type: str = "", reference: str = "", payload_hash: str = "") -> WebhookEvent | None:
    """Record a provider event once. Returns None when it was already seen."""
    event_id = (event_id or "").strip()[:128] or payload_hash[:32]
    if WebhookEvent.query.filter_by(provider=provider, event_id=event_id).first() is not None:
        return None
    row = WebhookEvent(
        provider=provider,
        event_id=event_id,
        event_type=(event_type or "")[:64] or None,
        reference=(reference or "")[:128] or None,
        status="received",
        request_id=get_request_id(),
        payload_hash=payload_hash or None,
    )
    try:
        with db.session.begin_nested():
            db.session.add(row)
    except IntegrityError:
        return None
    settings = get_settings()
    settings.last_webhook_at = datetime.utcnow()
    db.session.commit()
    return row


def finish_webhook(row: WebhookEvent, status: str, *, order_id: int | None = None, error: str | None = None) -> None:
    row = db.session.get(WebhookEvent, int(row.id))
    if row is None:
        return
    row.status = status
    row.processed_at = datetime.utcnow()
    if order_id is not None:
        row.order_id = int(order_id)
    if error:
        row.error = error[:1000]
    db.session.commit()


def _fail_webhook(row: WebhookEvent, provider: str, e: Exception) -> None:
    db.session.rollback()
    current_app.logger.exception(json.dumps({"event": "webhook_processing_failed", "provider": provider, "webhook_id": int(row.id)}))
    finish_webhook(row, "failed", error=str(e))


def handle_mpesa_callback(payload: dict) -> dict:
    callback = ((payload or {}).get("Body") or {}).get("stkCallback") or {}
    checkout_id = str(callback.get("CheckoutRequestID") or "").strip()
    try:
        result_code = int(callback.get("ResultCode"))
    except (TypeError, ValueError):
        result_code = -1
    if not checkout_id:
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "CheckoutRequestID missing"}

    row = claim_webhook("mpesa", f"{checkout_id}:{result_code}", event_type="stkCallback", reference=checkout_id, payload_hash=_payload_hash(payload))
    if row is None:
        return {"ok": True, "replayed": True}

    payment = Payment.query.filter_by(transaction_reference=checkout_id).first()
    if payment is None:
        finish_webhook(row, "ignored", error="payment not found")
        return {"ok": True, "ignored": True}
    try:
        if result_code == 0:
            items = (callback.get("CallbackMetadata") or {}).get("Item") or []
            values = {str(i.get("Name")): i.get("Value") for i in items if isinstance(i, dict)}
            receipt = str(values.get("MpesaReceiptNumber") or "").strip() or checkout_id
            capture_payment(payment, transaction_id=receipt, source="mpesa_callback")
        else:
            fail_payment(payment, reason=str(callback.get("ResultDesc") or f"ResultCode {result_code}"))
    except Exception as e:
        _fail_webhook(row, "mpesa", e)
        return {"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}
    finish_webhook(row, "processed", order_id=int(payment.order_id))
    return {"ok": True, "result_code": result_code}


def _paystack_payment(data: dict) -> Payment | None:
    reference = str(data.get("reference") or "").strip()
    payment = Payment.query.filter_by(transaction_reference=reference).first() if reference else None
    if payment is not None:
        return payment
    meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    try:
        order_id = int(meta.get("order_id"))
    except (TypeError, ValueError):
        return None
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    payment = primary_payment(order)
    if payment is None:
        payment = Payment(order_id=order_id, status="pending", amount_ksh=ksh_float(order.total_ksh), currency="KES")
    payment.gateway = "paystack"
    payment.transaction_reference = reference or payment.transaction_reference
    db.session.add(payment)
    db.session.flush()
    return payment


def process_paystack_webhook(*, payload: dict, raw: bytes, signature: str | None) -> tuple[dict, int]:
    """Verify, de-duplicate and apply one Paystack event. Returns (body, status)."""
    try:
        provider = build_paystack_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return {"ok": False, "error": str(e).split(":", 1)[0], "ignored": True}, 200
    if not signature or not provider.verify_signature(raw or b"", signature):
        return {"ok": False, "error": "INVALID_SIGNATURE"}, 401
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "event is required"}, 400

    event = payload["event"].strip()
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    reference = str(data.get("reference") or "").strip()
    event_id = f"{event}:{data.get('id') or reference}" if (data.get("id") or reference) else ""
    row = claim_webhook("paystack", event_id, event_type=event, reference=reference, payload_hash=_payload_hash(raw))
    if row is None:
        return {"ok": True, "replayed": True}, 200
    if event not in ("charge.success", "charge.failed"):
        finish_webhook(row, "ignored")
        return {"ok": True, "ignored": True, "event": event}, 200

    try:
        payment = _paystack_payment(data)
        if payment is None:
            db.session.rollback()
            finish_webhook(row, "ignored", error="payment not found")
            return {"ok": True, "ignored": True}, 200
        if event == "charge.success":
            capture_payment(payment, transaction_id=str(data.get("id") or reference), source="paystack_webhook")
        else:
            fail_payment(payment, reason=str(data.get("gateway_response") or "charge.failed"))
    except Exception as e:
        _fail_webhook(row, "paystack", e)
        return {"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}, 200
    finish_webhook(row, "processed", order_id=int(payment.order_id))
    return {"ok": True, "event": event}, 200


def _stripe_payment(intent: dict) -> Payment | None:
    intent_id = str(intent.get("id") or "").strip()
    payment = Payment.query.filter_by(transaction_reference=intent_id).first() if intent_id else None
    if payment is not None:
        return payment
    meta = intent.get("metadata") if isinstance(intent.get("metadata"), dict) else {}
    try:
        payment_id = int(meta.get("payment_id"))
    except (TypeError, ValueError):
        return None
    return db.session.get(Payment, payment_id)


def handle_stripe_event(event: dict) -> dict:
    event_type = str(event.get("type") or "")
    intent = ((event.get("data") or {}).get("object")) or {}
    row = claim_webhook("stripe", str(event.get("id") or ""), event_type=event_type, reference=str(intent.get("id") or ""), payload_hash=_payload_hash(event))
    if row is None:
        return {"ok": True, "replayed": True}
    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        finish_webhook(row, "ignored")
        return {"ok": True, "ignored": True, "event": event_type}

    payment = _stripe_payment(intent)
    if payment is None:
        finish_webhook(row, "ignored", error="payment not found")
        return {"ok": True, "ignored": True}
    try:
        if event_type == "payment_intent.succeeded":
            capture_payment(payment, transaction_id=str(intent.get("latest_charge") or intent.get("id")), source="stripe_webhook")
        else:
            error = intent.get("last_payment_error") or {}
            fail_payment(payment, reason=str(error.get("message") if isinstance(error, dict) else "") or "payment_failed")
    except Exception as e:
        _fail_webhook(row, "stripe", e)
        return {"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}
    finish_webhook(row, "processed", order_id=int(payment.order_id))
    return {"ok": True, "event": event_type}


def handle_intasend_event(payload: dict) -> dict:
    if not payload:
        return {"ok": True, "ignored": True}
    state = str(payload.get("state") or "").strip().upper()
    invoice_id = str(payload.get("invoice_id") or "").strip()
    api_ref = str(payload.get("api_ref") or "").strip()
    row = claim_webhook("intasend", f"{invoice_id or api_ref}:{state}", event_type=state, reference=api_ref, payload_hash=_payload_hash(payload))
    if row is None:
        return {"ok": True, "replayed": True}
    try:
        order = db.session.get(Order, int(api_ref))
    except (TypeError, ValueError):
        order = None
    payment = primary_payment(order) if order is not None else None
    if payment is None:
        finish_webhook(row, "ignored", error="order not found")
        return {"ok": True, "ignored": True}

    try:
        if invoice_id:
            payment.transaction_id = invoice_id[:128]
            db.session.add(payment)
        if state == "COMPLETE":
            capture_payment(payment, transaction_id=invoice_id or None, source="intasend_webhook")
        elif state == "FAILED":
            fail_payment(payment, reason=str(payload.get("failed_reason") or "FAILED"))
        else:
            db.session.commit()
    except Exception as e:
        _fail_webhook(row, "intasend", e)
        return {"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}
    finish_webhook(row, "processed", order_id=int(order.id))
    return {"ok": True, "state": state}
