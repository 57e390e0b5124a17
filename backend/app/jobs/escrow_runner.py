from __future__ import annotations

import os
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from app.extensions import db
from app.models import Dispute, EscrowTransaction, Order, User
from app.services.dispute_service import REASON_LABELS, create_dispute
from app.services.escrow_service import EscrowStatus, refund_escrow
from app.services.notification_service import dispatch, dispatch_admins
from app.services.order_service import OrderStatus, complete_order, transition_order
from app.utils.job_runs import record_job_run


STALE_CANCEL_NOTE = "Automatically cancelled: vendor did not respond within 24 hours"
AUTO_DISPUTE_NOTE = "Automatically opened: buyer has not confirmed delivery"
SYSTEM = {"type": "system", "id": None}


def _now():
    return datetime.utcnow()


def _hours(name: str, default: int) -> timedelta:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return timedelta(hours=max(1, value))


def stale_order_window() -> timedelta:
    return _hours("STALE_ORDER_HOURS", 24)


def unshipped_refund_window() -> timedelta:
    return _hours("UNSHIPPED_REFUND_HOURS", 72)


def auto_dispute_window() -> timedelta:
    return _hours("AUTO_DISPUTE_HOURS", 7 * 24)


def _finish(job_name: str, started_at: datetime, counters: dict) -> dict:
    errors = int(counters.get("errors") or 0)
    result = {"ok": True}
    result.update(counters)
    result["ts"] = _now().isoformat()
    record_job_run(
        job_name=job_name,
        ok=errors == 0,
        started_at=started_at,
        processed=int(counters.get("processed") or 0),
        result=result,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result


def _row_failed(job_name: str, order_id: int) -> None:
    db.session.rollback()
    current_app.logger.exception("%s_row_failed order_id=%s", job_name, order_id)


def run_auto_release_escrow(*, limit: int = 500) -> dict:
    """Complete arrived orders whose release time has passed while escrow is still held."""
    started_at = _now()
    processed = released = errors = 0
    rows = (
        Order.query.join(EscrowTransaction, EscrowTransaction.order_id == Order.id)
        .filter(
            Order.status == OrderStatus.ARRIVED,
            Order.auto_release_at.isnot(None),
            Order.auto_release_at <= started_at,
            EscrowTransaction.status == EscrowStatus.HELD,
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    for order in rows:
        processed += 1
        try:
            complete_order(order, reason="auto_release")
            db.session.commit()
        except Exception:
            errors += 1
            _row_failed("auto_release_escrow", int(order.id))
            continue
        released += 1
        dispatch("buyer_order_completed", db.session.get(User, int(order.customer_id)), order=order)
    return _finish("auto_release_escrow", started_at, {"processed": processed, "released": released, "errors": errors})


def run_auto_cancel_stale_orders(*, limit: int = 500) -> dict:
    started_at = _now()
    cutoff = started_at - stale_order_window()
    processed = cancelled = errors = 0
    rows = (
        Order.query.filter(Order.status == OrderStatus.PENDING_VENDOR_CONFIRMATION, Order.created_at <= cutoff)
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    for order in rows:
        processed += 1
        try:
            transition_order(order, OrderStatus.CANCELLED_BY_VENDOR)
            order.cancelled_at = _now()
            order.vendor_notes = STALE_CANCEL_NOTE
            refund_escrow(order, actor=SYSTEM, reason="vendor_no_response")
            db.session.commit()
        except Exception:
            errors += 1
            _row_failed("auto_cancel_stale_orders", int(order.id))
            continue
        cancelled += 1
        dispatch(
            "buyer_order_declined",
            db.session.get(User, int(order.customer_id)),
            order=order,
            context={"reason": STALE_CANCEL_NOTE + ".", "decline_label": "Auto-Cancelled", "decline_title": "Order Automatically Cancelled"},
        )
    return _finish("auto_cancel_stale_orders", started_at, {"processed": processed, "cancelled": cancelled, "errors": errors})


def run_auto_refund_unshipped(*, limit: int = 500) -> dict:
    started_at = _now()
    cutoff = started_at - unshipped_refund_window()
    processed = refunded = errors = 0
    rows = (
        Order.query.filter(
            Order.status == OrderStatus.ACCEPTED,
            Order.shipped_at.is_(None),
            func.coalesce(Order.accepted_at, Order.created_at) <= cutoff,
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    for order in rows:
        processed += 1
        try:
            transition_order(order, OrderStatus.CANCELLED_NO_SHIPMENT)
            order.cancelled_at = _now()
            refund_escrow(order, actor=SYSTEM, reason="not_shipped")
            db.session.commit()
        except Exception:
            errors += 1
            _row_failed("auto_refund_unshipped", int(order.id))
            continue
        refunded += 1
        dispatch("buyer_refund_unshipped", db.session.get(User, int(order.customer_id)), order=order, channels=("in_app", "email"))
    return _finish("auto_refund_unshipped", started_at, {"processed": processed, "refunded": refunded, "errors": errors})


def run_auto_dispute_unconfirmed(*, limit: int = 500) -> dict:
    """Open a system dispute for shipped orders the buyer never confirmed."""
    started_at = _now()
    cutoff = started_at - auto_dispute_window()
    processed = disputed = errors = 0
    disputed_orders = db.session.query(Dispute.order_id)
    rows = (
        Order.query.filter(
            Order.status.in_((OrderStatus.SHIPPED, OrderStatus.ARRIVED)),
            Order.shipped_at.isnot(None),
            Order.shipped_at <= cutoff,
            Order.buyer_confirmed.is_(False),
            ~Order.id.in_(disputed_orders),
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    for order in rows:
        processed += 1
        try:
            create_dispute(order, reason="no_delivery", description=AUTO_DISPUTE_NOTE, source="system")
            db.session.commit()
        except Exception:
            errors += 1
            _row_failed("auto_dispute_unconfirmed", int(order.id))
            continue
        disputed += 1
        dispatch_admins("dispute_filed", order=order, context={"reason_label": REASON_LABELS["no_delivery"]})
    return _finish("auto_dispute_unconfirmed", started_at, {"processed": processed, "disputed": disputed, "errors": errors})
