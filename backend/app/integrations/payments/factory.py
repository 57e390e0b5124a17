from __future__ import annotations

import os

from app.integrations.common import IntegrationMisconfiguredError, missing_env, require_enabled, require_env
from app.integrations.payments.base import IntaSendProvider, MpesaProvider, PaystackProvider, StripeProvider
from app.integrations.payments.intasend_provider import IntaSendPaymentsProvider
from app.integrations.payments.mock_provider import (
    MockIntaSendProvider,
    MockMpesaProvider,
    MockPaystackProvider,
    MockStripeProvider,
)
from app.integrations.payments.mpesa_provider import DarajaMpesaProvider, LIVE_BASE, SANDBOX_BASE
from app.integrations.payments.paystack_provider import PaystackPaymentsProvider
from app.integrations.payments.stripe_provider import StripePaymentsProvider


GATEWAY_FLAGS = {
    "mpesa": "mpesa_enabled",
    "paystack": "paystack_enabled",
    "card": "stripe_enabled",
    "intasend": "intasend_enabled",
}

_REQUIRED_ENV = {
    "mpesa": ("MPESA_CONSUMER_KEY", "MPESA_CONSUMER_SECRET", "MPESA_SHORTCODE", "MPESA_PASSKEY", "MPESA_CALLBACK_URL"),
    "paystack": ("PAYSTACK_SECRET_KEY",),
    "card": ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"),
    "intasend": ("INTASEND_SECRET_KEY", "INTASEND_PUBLISHABLE_KEY"),
}


def build_mpesa_provider(settings) -> MpesaProvider:
    mode = require_enabled(settings, "mpesa_enabled", "mpesa")
    if mode == "sandbox":
        return MockMpesaProvider()
    env = require_env(*_REQUIRED_ENV["mpesa"])
    base_url = LIVE_BASE if (os.getenv("MPESA_ENV") or "").strip().lower() == "production" else SANDBOX_BASE
    return DarajaMpesaProvider(
        consumer_key=env["MPESA_CONSUMER_KEY"],
        consumer_secret=env["MPESA_CONSUMER_SECRET"],
        shortcode=env["MPESA_SHORTCODE"],
        passkey=env["MPESA_PASSKEY"],
        callback_url=env["MPESA_CALLBACK_URL"],
        base_url=base_url,
    )


def build_paystack_provider(settings) -> PaystackProvider:
    mode = require_enabled(settings, "paystack_enabled", "paystack")
    if mode == "sandbox":
        return MockPaystackProvider(secret_key=(os.getenv("PAYSTACK_SECRET_KEY") or "").strip())
    env = require_env(*_REQUIRED_ENV["paystack"])
    return PaystackPaymentsProvider(secret_key=env["PAYSTACK_SECRET_KEY"])


def build_stripe_provider(settings) -> StripeProvider:
    mode = require_enabled(settings, "stripe_enabled", "stripe")
    if mode == "sandbox":
        return MockStripeProvider()
    env = require_env(*_REQUIRED_ENV["card"])
    return StripePaymentsProvider(secret_key=env["STRIPE_SECRET_KEY"], webhook_secret=env["STRIPE_WEBHOOK_SECRET"])


def build_intasend_provider(settings) -> IntaSendProvider:
    mode = require_enabled(settings, "intasend_enabled", "intasend")
    if mode == "sandbox":
        return MockIntaSendProvider()
    env = require_env(*_REQUIRED_ENV["intasend"])
    return IntaSendPaymentsProvider(
        secret_key=env["INTASEND_SECRET_KEY"],
        publishable_key=env["INTASEND_PUBLISHABLE_KEY"],
        settlement_wallet_id=(os.getenv("INTASEND_SETTLEMENT_WALLET_ID") or "").strip(),
    )


def build_gateway_provider(settings, gateway: str):
    g = (gateway or "").strip().lower()
    if g == "mpesa":
        return build_mpesa_provider(settings)
    if g == "paystack":
        return build_paystack_provider(settings)
    if g == "card":
        return build_stripe_provider(settings)
    if g == "intasend":
        return build_intasend_provider(settings)
    raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:unknown gateway={g}")


def payments_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    out = {}
    for gateway, flag in GATEWAY_FLAGS.items():
        enabled = bool(getattr(settings, flag, False))
        missing = missing_env(*_REQUIRED_ENV[gateway]) if mode == "live" and enabled else []
        if mode == "disabled" or not enabled:
            status = "disabled"
        elif missing:
            status = "misconfigured"
        else:
            status = "configured"
        out[gateway] = {"status": status, "mode": mode, "enabled": enabled, "missing": missing}
    return out
