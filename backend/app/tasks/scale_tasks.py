from __future__ import annotations

import base64
import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from app.extensions import db


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload, default=str))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _is_final(task) -> bool:
    return int(task.request.retries or 0) >= int(task.max_retries or 0)


@shared_task(
    bind=True,
    name="app.tasks.scale_tasks.send_email_notification",
    max_retries=5,
)
def send_email_notification(self, *, log_id: int, html: str, trace_id: str = ""):
    from app.services.notification_service import deliver_email

    started = time.perf_counter()
    final = _is_final(self)
    result = deliver_email(log_id=int(log_id), html=html, final=final)
    if result is None or result.ok:
        _task_log("send_email_notification", status="ok" if result is not None else "skipped", started_at=started, trace_id=trace_id, log_id=log_id)
        return {"ok": result is not None, "log_id": int(log_id)}
    if not final:
        countdown = _retry_countdown(int(self.request.retries or 0))
        _task_log(
            "send_email_notification",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            log_id=log_id,
            code=result.code,
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError(f"{result.code}:{result.message}"), countdown=countdown)
    _task_log("send_email_notification", status="failed", started_at=started, trace_id=trace_id, log_id=log_id, code=result.code)
    return {"ok": False, "log_id": int(log_id), "error": result.code}


@shared_task(
    bind=True,
    name="app.tasks.scale_tasks.send_push_notification",
    max_retries=5,
)
def send_push_notification(self, *, log_id: int, subscription_id: int, payload: dict, trace_id: str = ""):
    from app.services.notification_service import deliver_push

    started = time.perf_counter()
    final = _is_final(self)
    result = deliver_push(log_id=int(log_id), subscription_id=int(subscription_id), payload=payload, final=final)
    if result is None or result.ok or result.expired:
        status = "skipped" if result is None else ("expired" if result.expired else "ok")
        _task_log("send_push_notification", status=status, started_at=started, trace_id=trace_id, log_id=log_id)
        return {"ok": bool(result is not None and result.ok), "log_id": int(log_id), "status": status}
    if not final:
        countdown = _retry_countdown(int(self.request.retries or 0))
        _task_log(
            "send_push_notification",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            log_id=log_id,
            code=result.code,
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError(f"{result.code}:{result.message}"), countdown=countdown)
    _task_log("send_push_notification", status="failed", started_at=started, trace_id=trace_id, log_id=log_id, code=result.code)
    return {"ok": False, "log_id": int(log_id), "error": result.code}


@shared_task(
    bind=True,
    name="app.tasks.scale_tasks.process_paystack_webhook",
    max_retries=5,
)
def process_paystack_webhook_task(self, *, payload: dict, raw_b64: str = "", signature: str | None = None, trace_id: str = ""):
    from app.services.payment_service import process_paystack_webhook

    started = time.perf_counter()
    try:
        body, code = process_paystack_webhook(
            payload=payload if isinstance(payload, dict) else {},
            raw=base64.b64decode(raw_b64 or ""),
            signature=signature,
        )
    except Exception as exc:
        db.session.rollback()
        if not _is_final(self):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log("process_paystack_webhook", status="retrying", started_at=started, trace_id=trace_id, detail=str(exc), countdown=countdown)
            raise self.retry(exc=exc, countdown=countdown)
        _task_log("process_paystack_webhook", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise
    _task_log("process_paystack_webhook", status="ok", started_at=started, trace_id=trace_id, status_code=int(code))
    return {"ok": True, "status_code": int(code), "body": body}


@shared_task(
    bind=True,
    name="app.tasks.scale_tasks.transfer_to_vendor_wallet",
    max_retries=5,
)
def transfer_to_vendor_wallet_task(self, *, order_id: int, trace_id: str = ""):
    from app.services.payout_service import transfer_to_vendor_wallet

    started = time.perf_counter()
    try:
        result = transfer_to_vendor_wallet(int(order_id))
    except Exception as exc:
        db.session.rollback()
        if not _is_final(self):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log("transfer_to_vendor_wallet", status="retrying", started_at=started, trace_id=trace_id, order_id=order_id, detail=str(exc), countdown=countdown)
            raise self.retry(exc=exc, countdown=countdown)
        _task_log("transfer_to_vendor_wallet", status="failed", started_at=started, trace_id=trace_id, order_id=order_id, detail=str(exc))
        raise
    _task_log("transfer_to_vendor_wallet", status="ok", started_at=started, trace_id=trace_id, order_id=order_id, reference=result.get("reference"))
    return result


@shared_task(
    bind=True,
    name="app.tasks.scale_tasks.run_scheduled_job",
    max_retries=3,
)
def run_scheduled_job(self, *, job_name: str, trace_id: str = ""):
    from app.jobs.registry import run_job

    started = time.perf_counter()
    try:
        result = run_job(job_name)
    except KeyError:
        _task_log("run_scheduled_job", status="unknown_job", started_at=started, trace_id=trace_id, job_name=job_name)
        return {"ok": False, "error": "UNKNOWN_JOB", "job_name": job_name}
    except Exception as exc:
        db.session.rollback()
        if not _is_final(self):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log("run_scheduled_job", status="retrying", started_at=started, trace_id=trace_id, job_name=job_name, detail=str(exc), countdown=countdown)
            raise self.retry(exc=exc, countdown=countdown)
        _task_log("run_scheduled_job", status="failed", started_at=started, trace_id=trace_id, job_name=job_name, detail=str(exc))
        raise
    _task_log(
        "run_scheduled_job",
        status="ok" if int(result.get("errors") or 0) == 0 else "partial",
        started_at=started,
        trace_id=trace_id,
        job_name=job_name,
        processed=result.get("processed"),
    )
    return result
