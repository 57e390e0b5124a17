from __future__ import annotations

import json
from datetime import datetime

from flask import current_app, render_template
from markupsafe import Markup

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.messaging.factory import build_email_provider, build_push_provider
from app.models import Notification, NotificationLog, Order, PushSubscription, User, VendorProfile
from app.utils.events import log_event
from app.utils.platform_settings import get_settings
from app.utils.task_queue import enqueue


CHANNELS = ("in_app", "email", "push")
AUDIENCES = ("all", "vendors", "customers")


class _SafeContext(dict):
    def __missing__(self, key):
        return ""


# subject / in-app title / in-app message / deep link, formatted with the notification context.
TEMPLATES = {
    "vendor_new_order": {
        "subject": "New Order #{order_id} - Action Required",
        "title": "New Order Received",
        "message": "You have a new order #{order_id} worth KES {total}. Accept or decline it within 24 hours.",
        "link": "/vendor/orders",
    },
    "buyer_order_placed": {
        "subject": "Order Confirmed - #{order_id}",
        "title": "Order Confirmed",
        "message": "Your order #{order_id} from {store_name} has been placed. Total: KES {total}.",
        "link": "/orders",
    },
    "buyer_order_accepted": {
        "subject": "Order Accepted - #{order_id}",
        "title": "Order Accepted",
        "message": "{store_name} accepted your order #{order_id} and is preparing it.",
        "link": "/orders",
    },
    "buyer_order_declined": {
        "subject": "Order #{order_id} - {decline_label}",
        "title": "{decline_title}",
        "message": "Your order #{order_id} was cancelled. {reason} Any payment made will be refunded.",
        "link": "/orders",
    },
    "buyer_order_shipped": {
        "subject": "Order #{order_id} Has Shipped!",
        "title": "Order Shipped",
        "message": "Your order #{order_id} is on its way with {courier_name}. Tracking: {tracking_number}.",
        "link": "/orders",
    },
    "buyer_order_arrived": {
        "subject": "Order #{order_id} Has Arrived!",
        "title": "Order Arrived",
        "message": "Your order #{order_id} has arrived. Confirm receipt once you have checked it.",
        "link": "/orders",
    },
    "buyer_order_completed": {
        "subject": "Order Completed - Leave a Review! #{order_id}",
        "title": "Order Completed",
        "message": "Your order #{order_id} is complete. Rate {store_name} to help other shoppers.",
        "link": "/orders",
    },
    "buyer_pickup_ready": {
        "subject": "Order Ready for Pickup - #{order_id}",
        "title": "Order Ready for Pickup",
        "message": "Your order #{order_id} is ready for pickup at {store_name}.",
        "link": "/orders",
    },
    "buyer_delivery_otp": {
        "subject": "{otp_subject} - Order #{order_id}",
        "title": "{otp_subject}",
        "message": "Your delivery code for order #{order_id} is {otp}. Share it with the vendor only when you receive your order.",
        "link": "/orders",
    },
    "dispute_filed": {
        "subject": "Dispute Filed on Order #{order_id}",
        "title": "New Dispute Filed",
        "message": "A dispute ({reason_label}) was filed on order #{order_id}. Funds are on hold until it is resolved.",
        "link": "/disputes",
    },
    "dispute_update": {
        "subject": "Dispute Update - Order #{order_id}",
        "title": "{dispute_title}",
        "message": "The dispute on order #{order_id} was updated: {resolution_label}. {notes}",
        "link": "/disputes",
    },
    "buyer_refund_unshipped": {
        "subject": "Order #{order_id} - Refund Processed",
        "title": "Order Refunded",
        "message": "Your order #{order_id} was not shipped within 72 hours and has been cancelled. KES {total} will be refunded.",
        "link": "/orders",
    },
    "buyer_tracking_started": {
        "subject": "Track Your Delivery Live - Order #{order_id}",
        "title": "Live Tracking Started",
        "message": "{store_name} is sharing their location while delivering order #{order_id}.",
        "link": "/orders",
    },
    "price_drop_alert": {
        "subject": "Price Drop: {product_name} is now KES {new_price}",
        "title": "Price Drop Alert",
        "message": "{product_name} dropped from KES {old_price} to KES {new_price}.",
        "link": "/product/{product_id}",
    },
    "admin_announcement": {
        "subject": "{announcement_subject}",
        "title": "{announcement_subject}",
        "message": "{announcement_text}",
        "link": "/notifications",
    },
}


def _format(template: str, context: dict) -> str:
    return (template or "").format_map(_SafeContext(context)).strip()


def order_context(order: Order | None, **extra) -> dict:
    ctx = {}
    if order is not None:
        vendor_profile = None
        vendor = db.session.get(User, int(order.vendor_id))
        if vendor is not None:
            vendor_profile = VendorProfile.query.filter_by(user_id=int(vendor.id)).first()
        shipping = order.shipping
        ctx.update(
            {
                "order_id": int(order.id),
                "total": f"{float(order.total_ksh or 0.0):,.2f}",
                "subtotal": f"{float(order.subtotal_ksh or 0.0):,.2f}",
                "shipping_fee": f"{float(order.shipping_fee_ksh or 0.0):,.2f}",
                "store_name": (vendor_profile.store_name if vendor_profile else "") or (vendor.name if vendor else "the vendor"),
                "courier_name": (shipping.courier_name if shipping else "") or "the courier",
                "tracking_number": (shipping.tracking_number if shipping else "") or "n/a",
                "recipient_name": (shipping.recipient_name if shipping else "") or "",
                "is_pickup": bool(order.is_pickup),
                "items": [i.to_dict() for i in (order.items or [])],
            }
        )
    ctx.update(extra)
    return ctx


def render_email(template: str, context: dict) -> tuple[str, str]:
    tmpl = TEMPLATES.get(template) or {}
    subject = _format(tmpl.get("subject", ""), context) or "Sole-ly Kenya update"
    html = render_template(f"email/{template}.html", subject=subject, **context)
    return subject, html


def _email_recipient(user: User, order: Order | None) -> str:
    email = (user.email or "").strip()
    if not email and order is not None and order.shipping is not None and int(order.customer_id) == int(user.id):
        email = (order.shipping.email or "").strip()
    return email


def _log_row(*, user: User, order: Order | None, channel: str, template: str, recipient: str, subject: str = "", status: str = "pending", error: str | None = None) -> NotificationLog:
    row = NotificationLog(
        user_id=int(user.id),
        order_id=int(order.id) if order is not None else None,
        type=channel,
        template=template,
        recipient=(recipient or "")[:512],
        subject=(subject or "")[:200],
        status=status,
        error=error,
    )
    db.session.add(row)
    return row


def notify(template: str, user: User | None, *, order: Order | None = None, context: dict | None = None, channels=CHANNELS) -> Notification | None:
    """Fan one event out to in-app, email and push for a single user.

    The in-app row is committed immediately; email and push deliveries are
    logged as pending and handed to Celery (or run inline without a broker).
    """
    if user is None:
        return None
    tmpl = TEMPLATES.get(template)
    if tmpl is None:
        raise ValueError(f"unknown notification template {template}")
    ctx = order_context(order, **(context or {}))
    settings = get_settings()

    inbox = None
    if "in_app" in channels:
        inbox = Notification(
            user_id=int(user.id),
            kind=template,
            title=_format(tmpl["title"], ctx)[:160],
            message=_format(tmpl["message"], ctx),
            link=_format(tmpl.get("link", ""), ctx) or None,
            order_id=int(order.id) if order is not None else None,
            meta=json.dumps({"template": template}),
        )
        db.session.add(inbox)

    email_job = None
    if "email" in channels:
        email_job = _prepare_email(settings, template, user, order, ctx)

    push_jobs = []
    if "push" in channels:
        push_jobs = _prepare_push(settings, template, user, order, tmpl, ctx)

    db.session.commit()

    from app.tasks.scale_tasks import send_email_notification, send_push_notification

    if email_job is not None:
        log, subject, html = email_job
        enqueue(send_email_notification, deliver_email, log_id=int(log.id), html=html)
    for log, subscription, payload in push_jobs:
        enqueue(send_push_notification, deliver_push, log_id=int(log.id), subscription_id=int(subscription.id), payload=payload)
    return inbox


def _prepare_email(settings, template: str, user: User, order: Order | None, ctx: dict):
    recipient = _email_recipient(user, order)
    if not recipient:
        return None
    try:
        build_email_provider(settings)
    except IntegrationDisabledError:
        return None
    except IntegrationMisconfiguredError as e:
        _log_row(user=user, order=order, channel="email", template=template, recipient=recipient, status="failed", error=str(e))
        return None
    subject, html = render_email(template, dict(ctx, recipient_email=recipient, user_name=user.name or ""))
    log = _log_row(user=user, order=order, channel="email", template=template, recipient=recipient, subject=subject)
    return log, subject, html


def _prepare_push(settings, template: str, user: User, order: Order | None, tmpl: dict, ctx: dict) -> list:
    subs = PushSubscription.query.filter_by(user_id=int(user.id)).all()
    if not subs:
        return []
    try:
        build_push_provider(settings)
    except IntegrationDisabledError:
        return []
    except IntegrationMisconfiguredError as e:
        for sub in subs:
            _log_row(user=user, order=order, channel="push", template=template, recipient=sub.endpoint, status="failed", error=str(e))
        return []
    payload = {
        "title": _format(tmpl["title"], ctx),
        "body": _format(tmpl["message"], ctx),
        "url": _format(tmpl.get("link", ""), ctx) or "/",
        "tag": f"{template}:{ctx.get('order_id', '')}",
    }
    jobs = []
    for sub in subs:
        log = _log_row(user=user, order=order, channel="push", template=template, recipient=sub.endpoint, subject=payload["title"])
        jobs.append((log, sub, payload))
    return jobs


def notify_admins(template: str, *, order: Order | None = None, context: dict | None = None, channels=CHANNELS) -> int:
    admins = User.query.filter_by(role="admin").all()
    for admin in admins:
        notify(template, admin, order=order, context=context, channels=channels)
    return len(admins)


def dispatch(template: str, user: User | None, *, order: Order | None = None, context: dict | None = None, channels=CHANNELS) -> Notification | None:
    """Best-effort notify used after a state change has been committed."""
    try:
        return notify(template, user, order=order, context=context, channels=channels)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            json.dumps({"event": "notification_dispatch_failed", "template": template, "order_id": int(order.id) if order is not None else None})
        )
        return None


def dispatch_admins(template: str, *, order: Order | None = None, context: dict | None = None) -> int:
    try:
        return notify_admins(template, order=order, context=context)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(json.dumps({"event": "notification_dispatch_failed", "template": template}))
        return 0


def _mark_log(log: NotificationLog, result, *, final: bool) -> None:
    if result.ok:
        log.status = "sent"
        log.sent_at = datetime.utcnow()
        log.provider_ref = (result.message or "")[:128]
        log.error = None
    else:
        log.status = "failed" if final else "retrying"
        log.retry_count = int(log.retry_count or 0) + (0 if final else 1)
        log.error = f"{result.code}:{result.message}"[:1000]
    db.session.add(log)
    db.session.commit()


def deliver_email(*, log_id: int, html: str, final: bool = True):
    """Send one logged email. `final=False` marks a failure as retrying instead of failed."""
    log = db.session.get(NotificationLog, int(log_id))
    if log is None or log.status == "sent":
        return None
    try:
        provider = build_email_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        log.status = "failed"
        log.error = str(e)[:1000]
        db.session.commit()
        return None
    result = provider.send_email(to=log.recipient or "", subject=log.subject or "", html=html, reference=f"notification-{int(log.id)}")
    _mark_log(log, result, final=final)
    if not result.ok:
        current_app.logger.warning(json.dumps({"event": "email_delivery_failed", "log_id": int(log.id), "code": result.code}))
    return result


def deliver_push(*, log_id: int, subscription_id: int, payload: dict, final: bool = True):
    log = db.session.get(NotificationLog, int(log_id))
    if log is None or log.status == "sent":
        return None
    sub = db.session.get(PushSubscription, int(subscription_id))
    if sub is None:
        log.status = "failed"
        log.error = "subscription removed"
        db.session.commit()
        return None
    try:
        provider = build_push_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        log.status = "failed"
        log.error = str(e)[:1000]
        db.session.commit()
        return None
    result = provider.send_push(subscription_info=sub.subscription_info(), payload=payload)
    if result.expired:
        db.session.delete(sub)
        _mark_log(log, result, final=True)
        return result
    if result.ok:
        sub.last_used_at = datetime.utcnow()
    _mark_log(log, result, final=final)
    return result


def list_notifications(user: User, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = Notification.query.filter_by(user_id=int(user.id))
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(max(1, min(int(limit or 50), 200))).all()


def save_push_subscription(user: User, *, endpoint: str, p256dh: str, auth: str, user_agent: str = "") -> PushSubscription:
    row = PushSubscription.query.filter_by(endpoint=endpoint).first()
    if row is None:
        row = PushSubscription(endpoint=endpoint, user_id=int(user.id), p256dh=p256dh, auth=auth)
    row.user_id = int(user.id)
    row.p256dh = p256dh
    row.auth = auth
    row.user_agent = (user_agent or "")[:255] or None
    db.session.add(row)
    db.session.commit()
    return row


def remove_push_subscription(user: User, endpoint: str) -> bool:
    row = PushSubscription.query.filter_by(endpoint=endpoint, user_id=int(user.id)).first()
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def announcement_recipients(audience: str) -> list[User]:
    q = User.query
    if audience == "vendors":
        q = q.filter(User.role == "vendor")
    elif audience == "customers":
        q = q.filter(User.role != "vendor")
    return q.order_by(User.id.asc()).all()


def send_announcement(*, subject: str, html_content: str, audience: str, actor: User | None = None) -> dict:
    """Broadcast an admin-authored email (plus an inbox entry) to one audience.

    Each address receives one email even when several accounts share it.
    """
    subject = (subject or "").strip()
    html_content = (html_content or "").strip()
    audience = (audience or "").strip().lower()
    if not subject or not html_content or not audience:
        raise ValueError("subject, html_content and target_audience are required")
    if audience not in AUDIENCES:
        raise ValueError("target_audience must be one of all, vendors, customers")

    settings = get_settings()
    text = " ".join(Markup(html_content).striptags().split())
    ctx = {"announcement_subject": subject[:200], "announcement_text": text[:500], "body_html": html_content}
    seen = set()
    jobs = []
    for user in announcement_recipients(audience):
        email = (user.email or "").strip().lower()
        if not email or email in seen:
            continue
        seen.add(email)
        db.session.add(
            Notification(
                user_id=int(user.id),
                kind="admin_announcement",
                title=ctx["announcement_subject"][:160],
                message=ctx["announcement_text"],
                link="/notifications",
                meta=json.dumps({"template": "admin_announcement", "audience": audience}),
            )
        )
        job = _prepare_email(settings, "admin_announcement", user, None, ctx)
        if job is not None:
            jobs.append(job)
    log_event(
        "admin_announcement_sent",
        actor_user_id=int(actor.id) if actor is not None else None,
        metadata={"audience": audience, "subject": subject[:200], "recipients": len(seen)},
    )
    db.session.commit()

    from app.tasks.scale_tasks import send_email_notification

    for log, _subject, html in jobs:
        enqueue(send_email_notification, deliver_email, log_id=int(log.id), html=html)

    statuses = [log.status for log, _subject, _html in jobs]
    sent = statuses.count("sent")
    failed = statuses.count("failed")
    result = {"total": len(seen), "emails": len(jobs), "sent": sent, "failed": failed, "queued": len(jobs) - sent - failed}
    current_app.logger.info(json.dumps({"event": "admin_announcement_sent", "audience": audience, **result}))
    return result
