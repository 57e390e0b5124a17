from __future__ import annotations

import os
from datetime import datetime, timedelta

from app.extensions import db
from app.models import Order, OrderShippingDetails, User
from app.services.errors import ServiceError
from app.services.notification_service import dispatch
from app.services.order_service import OrderStatus, can_view, require_vendor_access
from app.utils.events import log_event


def tracking_max_age() -> timedelta:
    raw = (os.getenv("TRACKING_MAX_HOURS") or "8").strip()
    try:
        hours = int(raw)
    except ValueError:
        hours = 8
    return timedelta(hours=max(1, hours))


def _coords(latitude, longitude) -> tuple[float, float]:
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        raise ServiceError("INVALID_LOCATION", "latitude and longitude must be numbers", 400)
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ServiceError("INVALID_LOCATION", "latitude or longitude is out of range", 400)
    return lat, lng


def is_live(order: Order, *, now: datetime | None = None) -> bool:
    details = order.shipping
    if details is None or not details.delivery_tracking_enabled or details.tracking_started_at is None:
        return False
    if order.status != OrderStatus.SHIPPED:
        return False
    return (now or datetime.utcnow()) - details.tracking_started_at < tracking_max_age()


def start_tracking(order: Order, user: User, *, latitude, longitude) -> OrderShippingDetails:
    require_vendor_access(order, user)
    if order.is_pickup:
        raise ServiceError("NOT_DELIVERY_ORDER", "Pickup orders have no delivery to track", 409)
    if order.status != OrderStatus.SHIPPED:
        raise ServiceError(
            "TRACKING_NOT_AVAILABLE",
            "Live tracking is only available while the order is out for delivery",
            409,
            current_status=order.status,
        )
    lat, lng = _coords(latitude, longitude)
    if order.shipping is None:
        order.shipping = OrderShippingDetails(order_id=int(order.id), recipient_name="")
    details = order.shipping
    resumed = bool(details.delivery_tracking_enabled)
    now = datetime.utcnow()
    details.delivery_tracking_enabled = True
    details.delivery_current_latitude = lat
    details.delivery_current_longitude = lng
    details.delivery_location_updated_at = now
    details.tracking_started_at = now
    details.tracking_stopped_at = None
    log_event("delivery_tracking_started", actor_user_id=int(user.id), order_id=int(order.id), metadata={"resumed": resumed})
    db.session.commit()
    if not resumed:
        dispatch("buyer_tracking_started", db.session.get(User, int(order.customer_id)), order=order, channels=("in_app", "push"))
    return details


def update_location(order: Order, user: User, *, latitude, longitude) -> OrderShippingDetails:
    require_vendor_access(order, user)
    lat, lng = _coords(latitude, longitude)
    if not is_live(order):
        raise ServiceError("TRACKING_NOT_ACTIVE", "Start live tracking before sharing a location", 409)
    details = order.shipping
    details.delivery_current_latitude = lat
    details.delivery_current_longitude = lng
    details.delivery_location_updated_at = datetime.utcnow()
    db.session.commit()
    return details


def stop_tracking(order: Order, user: User | None, *, reason: str = "stopped") -> OrderShippingDetails | None:
    if user is not None:
        require_vendor_access(order, user)
    details = order.shipping
    if details is None or not details.stop_tracking(datetime.utcnow()):
        return details
    log_event(
        "delivery_tracking_stopped",
        actor_user_id=int(user.id) if user is not None else None,
        order_id=int(order.id),
        metadata={"reason": reason},
    )
    db.session.commit()
    return details


def tracking_view(order: Order, user: User) -> dict:
    """What the buyer's map shows. Coordinates are withheld once tracking is no longer live."""
    if not can_view(order, user):
        raise ServiceError("FORBIDDEN", "You cannot view this order", 403)
    details = order.shipping
    live = is_live(order)

    def _iso(value):
        return value.isoformat() if value else None

    return {
        "order_id": int(order.id),
        "order_status": order.status,
        "active": live,
        "latitude": details.delivery_current_latitude if live else None,
        "longitude": details.delivery_current_longitude if live else None,
        "location_updated_at": _iso(details.delivery_location_updated_at) if details else None,
        "tracking_started_at": _iso(details.tracking_started_at) if details else None,
        "tracking_stopped_at": _iso(details.tracking_stopped_at) if details else None,
        "destination": {
            "latitude": details.gps_latitude if details else None,
            "longitude": details.gps_longitude if details else None,
        },
    }


def stale_tracking_sessions(*, now: datetime | None = None, limit: int = 500) -> list[Order]:
    now = now or datetime.utcnow()
    rows = (
        Order.query.join(OrderShippingDetails, OrderShippingDetails.order_id == Order.id)
        .filter(OrderShippingDetails.delivery_tracking_enabled.is_(True))
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    return [o for o in rows if not is_live(o, now=now)]
