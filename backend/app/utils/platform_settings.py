from __future__ import annotations

import os

from app.extensions import db
from app.models import PlatformSettings


_MODES = ("disabled", "sandbox", "live")


def _default_mode() -> str:
    mode = (os.getenv("INTEGRATIONS_MODE") or "disabled").strip().lower()
    return mode if mode in _MODES else "disabled"


def get_settings() -> PlatformSettings:
    row = PlatformSettings.query.order_by(PlatformSettings.id.asc()).first()
    if row:
        return row
    row = PlatformSettings(integrations_mode=_default_mode())
    if row.integrations_mode != "disabled":
        # Non-disabled bootstrap turns every channel on; admins narrow it afterwards.
        for name in PlatformSettings.TOGGLES:
            setattr(row, name, True)
    db.session.add(row)
    db.session.commit()
    return row


def update_settings(patch: dict, *, actor_id: int | None = None) -> PlatformSettings:
    row = get_settings()
    mode = patch.get("integrations_mode")
    if mode is not None:
        mode = str(mode).strip().lower()
        if mode not in _MODES:
            raise ValueError("integrations_mode must be disabled|sandbox|live")
        row.integrations_mode = mode
    for name in PlatformSettings.TOGGLES:
        if name in patch:
            raw = patch.get(name)
            if isinstance(raw, str):
                raw = raw.strip().lower() in ("1", "true", "yes", "on")
            setattr(row, name, bool(raw))
    row.updated_by = actor_id
    db.session.add(row)
    db.session.commit()
    return row


def integrations_mode(settings=None) -> str:
    s = settings or get_settings()
    return (getattr(s, "integrations_mode", "disabled") or "disabled").strip().lower()
