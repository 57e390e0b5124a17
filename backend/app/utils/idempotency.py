from __future__ import annotations

import hashlib
import json
from typing import Any

from flask import has_request_context, request

from app.extensions import db
from app.models import IdempotencyKey


def _canonical_json(payload: Any) -> str:
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(payload)


def _hash_request(*, scope: str, payload: Any) -> str:
    method = request.method if has_request_context() else "POST"
    raw = f"{(method or 'POST').upper()}|{scope}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def _reuse_conflict_response() -> tuple[str, dict, int]:
    return (
        "conflict",
        {
            "ok": False,
            "error": "IDEMPOTENCY_KEY_REUSE",
            "message": "This Idempotency-Key was already used with a different request payload.",
        },
        409,
    )


def lookup_response(user_id: int | None, scope: str, payload: Any, *, idempotency_key: str | None = None):
    """Returns None when no key was sent, ("hit", body, code) for replays,
    ("conflict", body, 409) on payload mismatch, or ("miss", row, 0) for a fresh key."""
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        return None
    scope_key = str(scope or "").strip()[:128]
    req_hash = _hash_request(scope=scope_key, payload=payload)

    row = IdempotencyKey.query.filter_by(scope=scope_key, key=k).first()
    if row:
        if (row.request_hash or "") and row.request_hash != req_hash:
            return _reuse_conflict_response()
        if row.response_json:
            try:
                return ("hit", json.loads(row.response_json), int(row.response_code or 200))
            except ValueError:
                pass
        return ("hit", {"ok": True}, int(row.response_code or 200))

    row = IdempotencyKey(
        key=k,
        scope=scope_key,
        user_id=int(user_id) if user_id is not None else None,
        request_hash=req_hash,
        response_json=None,
        response_code=200,
    )
    db.session.add(row)
    db.session.commit()
    return ("miss", row, 0)


def store_response(row: IdempotencyKey, response_json: Any, status_code: int):
    row.response_json = _canonical_json(response_json)
    row.response_code = int(status_code or 200)
    db.session.add(row)
    db.session.commit()
