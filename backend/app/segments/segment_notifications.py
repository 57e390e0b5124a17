from __future__ import annotations

import os

from flask import Blueprint, jsonify, request

from app.extensions import db
from app.models import Notification
from app.services.notification_service import list_notifications, remove_push_subscription, save_push_subscription
from app.utils.auth import current_user

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api")

_NOTIF_INIT_DONE = False


@notifications_bp.before_app_request
def _ensure_tables_once():
    global _NOTIF_INIT_DONE
    if _NOTIF_INIT_DONE:
        return
    db.create_all()
    _NOTIF_INIT_DONE = True


@notifications_bp.get("/notifications")
def my_notifications():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    unread_only = (request.args.get("unread") or "").strip().lower() in ("1", "true", "yes")
    limit = request.args.get("limit", default=50, type=int)
    rows = list_notifications(user, unread_only=unread_only, limit=limit)
    unread = Notification.query.filter_by(user_id=int(user.id)).filter(Notification.read_at.is_(None)).count()
    return jsonify({"ok": True, "items": [n.to_dict() for n in rows], "unread_count": int(unread)}), 200


@notifications_bp.post("/notifications/<int:notification_id>/read")
def mark_read(notification_id: int):
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    row = db.session.get(Notification, notification_id)
    if not row or int(row.user_id) != int(user.id):
        return jsonify({"message": "Not found"}), 404
    row.mark_read()
    db.session.commit()
    return jsonify({"ok": True, "notification": row.to_dict()}), 200


@notifications_bp.post("/notifications/read-all")
def mark_all_read():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    rows = Notification.query.filter_by(user_id=int(user.id)).filter(Notification.read_at.is_(None)).all()
    for row in rows:
        row.mark_read()
    db.session.commit()
    return jsonify({"ok": True, "updated": len(rows)}), 200


@notifications_bp.get("/push/vapid-public-key")
def vapid_public_key():
    key = (os.getenv("VAPID_PUBLIC_KEY") or "").strip()
    if not key:
        return jsonify({"ok": False, "error": "PUSH_NOT_CONFIGURED", "message": "Push notifications are not configured"}), 404
    return jsonify({"ok": True, "public_key": key}), 200


@notifications_bp.post("/push/subscribe")
def push_subscribe():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    keys = data.get("keys") if isinstance(data.get("keys"), dict) else {}
    endpoint = str(data.get("endpoint") or "").strip()
    p256dh = str(keys.get("p256dh") or "").strip()
    auth = str(keys.get("auth") or "").strip()
    if not endpoint.startswith("https://") or not p256dh or not auth:
        return jsonify({"ok": False, "error": "INVALID_SUBSCRIPTION", "message": "endpoint and keys.p256dh/keys.auth are required"}), 400
    row = save_push_subscription(user, endpoint=endpoint, p256dh=p256dh, auth=auth, user_agent=request.headers.get("User-Agent", ""))
    return jsonify({"ok": True, "subscription_id": int(row.id)}), 201


@notifications_bp.post("/push/unsubscribe")
def push_unsubscribe():
    user = current_user()
    if not user:
        return jsonify({"message": "Unauthorized"}), 401
    data = request.get_json(silent=True) or {}
    endpoint = str(data.get("endpoint") or "").strip()
    if not endpoint:
        return jsonify({"ok": False, "error": "INVALID_SUBSCRIPTION", "message": "endpoint is required"}), 400
    return jsonify({"ok": True, "removed": remove_push_subscription(user, endpoint)}), 200
