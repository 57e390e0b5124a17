from __future__ import annotations

from datetime import datetime

from flask import current_app

from app.extensions import db
from app.models import PriceAlert, Product
from app.services.delivery_tracking_service import stale_tracking_sessions, stop_tracking
from app.services.price_alert_service import notify_price_drop
from app.utils.job_runs import record_job_run


def _record(job_name: str, started_at: datetime, counters: dict) -> dict:
    errors = int(counters.get("errors") or 0)
    result = {"ok": True}
    result.update(counters)
    result["ts"] = datetime.utcnow().isoformat()
    record_job_run(
        job_name=job_name,
        ok=errors == 0,
        started_at=started_at,
        processed=int(counters.get("processed") or 0),
        result=result,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result


def run_price_drop_alerts(*, limit: int = 500) -> dict:
    """Catch price drops that did not come through the vendor product editor."""
    started_at = datetime.utcnow()
    processed = notified = errors = 0
    product_ids = [
        pid
        for (pid,) in db.session.query(PriceAlert.product_id)
        .filter(PriceAlert.is_active.is_(True), PriceAlert.notified_at.is_(None))
        .distinct()
        .limit(int(limit))
        .all()
    ]
    for product_id in product_ids:
        processed += 1
        try:
            product = db.session.get(Product, int(product_id))
            if product is not None:
                notified += notify_price_drop(product)
        except Exception:
            errors += 1
            db.session.rollback()
            current_app.logger.exception("price_drop_alerts_row_failed product_id=%s", product_id)
    return _record("price_drop_alerts", started_at, {"processed": processed, "notified": notified, "errors": errors})


def run_stop_stale_tracking(*, limit: int = 500) -> dict:
    """Switch off live tracking left running after delivery or past the session limit."""
    started_at = datetime.utcnow()
    processed = stopped = errors = 0
    for order in stale_tracking_sessions(now=started_at, limit=limit):
        processed += 1
        try:
            stop_tracking(order, None, reason="expired")
            stopped += 1
        except Exception:
            errors += 1
            db.session.rollback()
            current_app.logger.exception("stop_stale_tracking_row_failed order_id=%s", order.id)
    return _record("stop_stale_tracking", started_at, {"processed": processed, "stopped": stopped, "errors": errors})
