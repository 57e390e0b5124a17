from __future__ import annotations

import os

from app.integrations.common import missing_env, require_enabled, require_env
from app.integrations.messaging.base import EmailProvider, PushProvider
from app.integrations.messaging.mock_provider import MockEmailProvider, MockPushProvider
from app.integrations.messaging.resend_provider import DEFAULT_SENDER, ResendEmailProvider
from app.integrations.messaging.webpush_provider import WebPushProvider


def build_email_provider(settings) -> EmailProvider:
    mode = require_enabled(settings, "email_enabled", "email")
    if mode == "sandbox":
        return MockEmailProvider()
    env = require_env("RESEND_API_KEY")
    return ResendEmailProvider(api_key=env["RESEND_API_KEY"], sender=(os.getenv("EMAIL_FROM") or DEFAULT_SENDER).strip())


def build_push_provider(settings) -> PushProvider:
    mode = require_enabled(settings, "push_enabled", "push")
    if mode == "sandbox":
        return MockPushProvider()
    env = require_env("VAPID_PRIVATE_KEY", "VAPID_PUBLIC_KEY")
    subject = (os.getenv("VAPID_SUBJECT") or "mailto:support@solelyshoes.co.ke").strip()
    return WebPushProvider(vapid_private_key=env["VAPID_PRIVATE_KEY"], vapid_subject=subject)


def messaging_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    out = {}
    for channel, flag, names in (
        ("email", "email_enabled", ("RESEND_API_KEY",)),
        ("push", "push_enabled", ("VAPID_PRIVATE_KEY", "VAPID_PUBLIC_KEY")),
    ):
        enabled = bool(getattr(settings, flag, False))
        missing = missing_env(*names) if mode == "live" and enabled else []
        if mode == "disabled" or not enabled:
            status = "disabled"
        elif missing:
            status = "misconfigured"
        else:
            status = "configured"
        out[channel] = {"status": status, "mode": mode, "enabled": enabled, "missing": missing}
    return out
