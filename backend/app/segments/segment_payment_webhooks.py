from __future__ import annotations

import base64
import os

import stripe
from flask import Blueprint, jsonify, request, current_app

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.payments.factory import build_stripe_provider
from app.services.payment_service import (
    handle_intasend_event,
    handle_mpesa_callback,
    handle_stripe_event,
    process_paystack_webhook,
)
from app.utils.observability import get_request_id
from app.utils.platform_settings import get_settings
from app.utils.task_queue import celery_queue_enabled

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")

_WEBHOOKS_INIT_DONE = False

MPESA_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@webhooks_bp.before_app_request
def _ensure_tables_once():
    global _WEBHOOKS_INIT_DONE
    if _WEBHOOKS_INIT_DONE:
        return
    db.create_all()
    _WEBHOOKS_INIT_DONE = True


def _paystack_queue_enabled() -> bool:
    raw = (os.getenv("PAYSTACK_WEBHOOK_QUEUE") or "false").strip().lower()
    return raw in ("1", "true", "yes", "on") and celery_queue_enabled()


@webhooks_bp.post("/mpesa")
def mpesa_callback():
    # Safaricom retries anything that is not a ResultCode 0 acknowledgement.
    payload = request.get_json(silent=True) or {}
    try:
        result = handle_mpesa_callback(payload)
        if not result.get("ok"):
            current_app.logger.warning("mpesa_callback_not_applied error=%s", result.get("error"))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("mpesa_callback_route_failed")
    return jsonify(MPESA_ACK), 200


@webhooks_bp.post("/paystack")
def paystack_webhook():
    try:
        raw = request.get_data() or b"{}"
        sig = request.headers.get("X-Paystack-Signature")
        payload = request.get_json(silent=True) or {}

        if _paystack_queue_enabled():
            try:
                from app.tasks.scale_tasks import process_paystack_webhook_task

                process_paystack_webhook_task.delay(
                    payload=payload if isinstance(payload, dict) else {},
                    raw_b64=base64.b64encode(raw or b"").decode("ascii"),
                    signature=sig,
                    trace_id=get_request_id(),
                )
                return jsonify({"ok": True, "queued": True, "trace_id": get_request_id()}), 200
            except Exception:
                db.session.rollback()
                current_app.logger.warning("paystack_webhook_enqueue_failed; processing inline")

        body, status = process_paystack_webhook(payload=payload, raw=raw, signature=sig)
        return jsonify(body), int(status)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("paystack_webhook_route_failed")
        return jsonify({"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}), 200


@webhooks_bp.post("/stripe")
def stripe_webhook():
    try:
        provider = build_stripe_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return jsonify({"ok": False, "error": str(e).split(":", 1)[0], "ignored": True}), 200
    try:
        event = provider.construct_event(request.get_data() or b"", request.headers.get("Stripe-Signature"))
    except (ValueError, stripe.SignatureVerificationError) as e:
        return jsonify({"ok": False, "error": "INVALID_SIGNATURE", "message": str(e)[:200]}), 400
    try:
        return jsonify(handle_stripe_event(event)), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("stripe_webhook_route_failed")
        return jsonify({"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}), 200


@webhooks_bp.post("/intasend")
def intasend_webhook():
    payload = request.get_json(silent=True) or {}
    try:
        return jsonify(handle_intasend_event(payload if isinstance(payload, dict) else {})), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("intasend_webhook_route_failed")
        return jsonify({"ok": False, "error": "WEBHOOK_HANDLER_FAILED"}), 200
