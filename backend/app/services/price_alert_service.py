from __future__ import annotations

import json
from datetime import datetime

from flask import current_app

from app.extensions import db
from app.models import PriceAlert, Product, User
from app.services.errors import ServiceError
from app.services.notification_service import dispatch
from app.utils.commission import ksh_float, to_decimal


def _active_product(product_id: int) -> Product:
    product = db.session.get(Product, int(product_id))
    if product is None or product.status != "active":
        raise ServiceError("PRODUCT_NOT_FOUND", "Product not found", 404)
    return product


def watch_price(user: User, product_id: int, *, target_price=None) -> PriceAlert:
    """Create or re-arm the single alert a user keeps per product."""
    product = _active_product(product_id)
    current = float(product.price_ksh or 0.0)
    target = None
    if target_price not in (None, ""):
        value = to_decimal(target_price)
        if value <= 0:
            raise ServiceError("INVALID_TARGET_PRICE", "target_price must be greater than 0", 400)
        if float(value) >= current:
            raise ServiceError("INVALID_TARGET_PRICE", "target_price must be below the current price", 400, price_ksh=current)
        target = ksh_float(value)

    alert = PriceAlert.query.filter_by(user_id=int(user.id), product_id=int(product.id)).first()
    if alert is None:
        alert = PriceAlert(user_id=int(user.id), product_id=int(product.id))
    alert.original_price = current
    alert.target_price = target
    alert.is_active = True
    alert.notified_at = None
    db.session.add(alert)
    db.session.commit()
    return alert


def unwatch_price(user: User, product_id: int) -> bool:
    alert = PriceAlert.query.filter_by(user_id=int(user.id), product_id=int(product_id)).first()
    if alert is None:
        return False
    db.session.delete(alert)
    db.session.commit()
    return True


def list_price_alerts(user: User, *, active_only: bool = False) -> list[PriceAlert]:
    q = PriceAlert.query.filter_by(user_id=int(user.id))
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(PriceAlert.created_at.desc(), PriceAlert.id.desc()).all()


def notify_price_drop(product: Product) -> int:
    """Fire every armed alert the product's current price satisfies. Each alert fires once."""
    if product.status != "active":
        return 0
    price = float(product.price_ksh or 0.0)
    due = [
        a
        for a in PriceAlert.query.filter_by(product_id=int(product.id), is_active=True).filter(PriceAlert.notified_at.is_(None)).all()
        if a.triggered_by(price)
    ]
    if not due:
        return 0
    now = datetime.utcnow()
    for alert in due:
        alert.notified_at = now
        alert.is_active = False
    db.session.commit()

    for alert in due:
        dispatch(
            "price_drop_alert",
            db.session.get(User, int(alert.user_id)),
            context={
                "product_id": int(product.id),
                "product_name": product.name or "",
                "old_price": f"{float(alert.original_price):,.2f}",
                "new_price": f"{price:,.2f}",
                "image": product.images[0] if product.images else "",
            },
        )
    current_app.logger.info(json.dumps({"event": "price_drop_alerts_sent", "product_id": int(product.id), "count": len(due)}))
    return len(due)
