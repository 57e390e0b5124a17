from __future__ import annotations

from flask import g, request

from app.extensions import db
from app.models import User
from app.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    """Resolve the bearer token on the current request to a User row."""
    cached = getattr(g, "_solely_current_user", None)
    if cached is not None:
        return cached
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, uid)
    if user is not None:
        g._solely_current_user = user
        g.auth_user_id = int(user.id)
        g.auth_role = user.role
    return user


def is_admin(user: User | None) -> bool:
    return bool(user is not None and (user.role or "").lower() == "admin")


def is_vendor(user: User | None) -> bool:
    return bool(user is not None and (user.role or "").lower() in ("vendor", "admin"))
