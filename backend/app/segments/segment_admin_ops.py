from __future__ import annotations

import json

from flask import Blueprint, jsonify, request, current_app

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.messaging.factory import messaging_health
from app.integrations.payments.factory import payments_health
from app.jobs.registry import JOBS, run_job
from app.models import Payout, PlatformEvent, WebhookEvent
from app.services.dispute_service import get_dispute_or_404, list_all_disputes, resolve_dispute
from app.services.notification_service import send_announcement
from app.services.order_service import get_order_or_404, serialize_order
from app.services.payment_service import process_refund
from app.services.payout_service import mark_payout_failed, mark_payout_paid
from app.utils.auth import current_user, is_admin
from app.utils.job_runs import recent_job_runs
from app.utils.observability import get_request_id
from app.utils.platform_settings import get_settings, update_settings
from app.utils.rate_limit import limiter_stats

admin_ops_bp = Blueprint("admin_ops_bp", __name__, url_prefix="/api/admin")


def _admin():
    user = current_user()
    if not user:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    if not is_admin(user):
        return None, (jsonify({"message": "Forbidden"}), 403)
    return user, None


def _limit(default: int = 50) -> int:
    return max(1, min(request.args.get("limit", default=default, type=int) or default, 200))


@admin_ops_bp.get("/settings")
def get_platform_settings():
    _, err = _admin()
    if err:
        return err
    return jsonify({"ok": True, "settings": get_settings().to_dict()}), 200


@admin_ops_bp.patch("/settings")
def patch_platform_settings():
    admin, err = _admin()
    if err:
        return err
    try:
        row = update_settings(request.get_json(silent=True) or {}, actor_id=int(admin.id))
    except ValueError as e:
        db.session.rollback()
        return jsonify({"ok": False, "error": "INVALID_SETTINGS", "message": str(e)}), 400
    current_app.logger.info(json.dumps({"event": "platform_settings_updated", "actor_id": int(admin.id), "trace_id": get_request_id()}))
    return jsonify({"ok": True, "settings": row.to_dict()}), 200


@admin_ops_bp.get("/integrations/health")
def integrations_health():
    _, err = _admin()
    if err:
        return err
    settings = get_settings()
    return jsonify(
        {
            "ok": True,
            "mode": settings.integrations_mode,
            "payments": payments_health(settings),
            "messaging": messaging_health(settings),
            "last_webhook_at": settings.last_webhook_at.isoformat() if settings.last_webhook_at else None,
            "rate_limiter": limiter_stats(),
        }
    ), 200


@admin_ops_bp.get("/jobs")
def list_jobs():
    _, err = _admin()
    if err:
        return err
    return jsonify({"ok": True, "jobs": sorted(JOBS.keys())}), 200


@admin_ops_bp.post("/jobs/<job_name>/run")
def run_job_now(job_name: str):
    admin, err = _admin()
    if err:
        return err
    if job_name not in JOBS:
        return jsonify({"ok": False, "error": "UNKNOWN_JOB", "message": f"Unknown job {job_name}"}), 404
    result = run_job(job_name)
    current_app.logger.info(json.dumps({"event": "job_run_manual", "job_name": job_name, "actor_id": int(admin.id), "processed": result.get("processed")}))
    return jsonify({"ok": True, "job_name": job_name, "result": result}), 200


@admin_ops_bp.get("/job-runs")
def job_runs():
    _, err = _admin()
    if err:
        return err
    job_name = (request.args.get("job_name") or "").strip() or None
    rows = recent_job_runs(job_name=job_name, limit=_limit())
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_ops_bp.get("/events")
def platform_events():
    _, err = _admin()
    if err:
        return err
    q = PlatformEvent.query
    order_id = request.args.get("order_id", type=int)
    if order_id:
        q = q.filter_by(order_id=order_id)
    rows = q.order_by(PlatformEvent.created_at.desc(), PlatformEvent.id.desc()).limit(_limit()).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_ops_bp.get("/webhooks")
def webhook_events():
    _, err = _admin()
    if err:
        return err
    q = WebhookEvent.query
    provider = (request.args.get("provider") or "").strip().lower()
    if provider:
        q = q.filter_by(provider=provider)
    rows = q.order_by(WebhookEvent.id.desc()).limit(_limit()).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_ops_bp.post("/orders/<int:order_id>/refund")
def refund_order(order_id: int):
    admin, err = _admin()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    order = get_order_or_404(order_id)
    try:
        result = process_refund(order, reason=str(data.get("reason") or "other"), actor=admin)
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        db.session.rollback()
        code, _, detail = str(e).partition(":")
        return jsonify({"ok": False, "error": code or "PROVIDER_ERROR", "message": detail or "Refund failed"}), 502
    return jsonify({"ok": True, "refund": result, "order": serialize_order(order, admin)}), 200


@admin_ops_bp.get("/payouts")
def list_payouts():
    _, err = _admin()
    if err:
        return err
    q = Payout.query
    status = (request.args.get("status") or "").strip().lower()
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(Payout.created_at.desc(), Payout.id.desc()).limit(_limit()).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows]}), 200


@admin_ops_bp.post("/payouts/<int:payout_id>/mark-paid")
def payout_mark_paid(payout_id: int):
    admin, err = _admin()
    if err:
        return err
    payout = db.session.get(Payout, payout_id)
    if not payout:
        return jsonify({"message": "Payout not found"}), 404
    data = request.get_json(silent=True) or {}
    payout = mark_payout_paid(payout, reference=str(data.get("reference") or ""), actor_id=int(admin.id))
    return jsonify({"ok": True, "payout": payout.to_dict()}), 200


@admin_ops_bp.post("/payouts/<int:payout_id>/mark-failed")
def payout_mark_failed(payout_id: int):
    admin, err = _admin()
    if err:
        return err
    payout = db.session.get(Payout, payout_id)
    if not payout:
        return jsonify({"message": "Payout not found"}), 404
    data = request.get_json(silent=True) or {}
    payout = mark_payout_failed(payout, reason=str(data.get("reason") or ""), actor_id=int(admin.id))
    return jsonify({"ok": True, "payout": payout.to_dict()}), 200


@admin_ops_bp.get("/disputes")
def all_disputes():
    _, err = _admin()
    if err:
        return err
    status = (request.args.get("status") or "").strip() or None
    return jsonify({"ok": True, "items": [d.to_dict() for d in list_all_disputes(status=status)]}), 200


@admin_ops_bp.post("/disputes/<int:dispute_id>/resolve")
def resolve(dispute_id: int):
    admin, err = _admin()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        dispute = resolve_dispute(
            get_dispute_or_404(dispute_id),
            admin,
            resolution=str(data.get("resolution") or ""),
            notes=str(data.get("notes") or ""),
        )
    except (IntegrationDisabledError, IntegrationMisconfiguredError):
        raise
    except RuntimeError as e:
        db.session.rollback()
        code, _, detail = str(e).partition(":")
        return jsonify({"ok": False, "error": code or "PROVIDER_ERROR", "message": detail or "Refund failed"}), 502
    return jsonify({"ok": True, "dispute": dispute.to_dict()}), 200


@admin_ops_bp.post("/announcements")
def announce():
    admin, err = _admin()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        result = send_announcement(
            subject=str(data.get("subject") or ""),
            html_content=str(data.get("html_content") or data.get("htmlContent") or ""),
            audience=str(data.get("target_audience") or data.get("targetAudience") or ""),
            actor=admin,
        )
    except ValueError as e:
        return jsonify({"ok": False, "error": "INVALID_ANNOUNCEMENT", "message": str(e)}), 400
    message = f"Sent to {result['sent']} recipients" if result["total"] else "No recipients found"
    if result["failed"]:
        message += f", {result['failed']} failed"
    return jsonify({"ok": True, "message": message, **result}), 200
