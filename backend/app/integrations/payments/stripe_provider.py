from __future__ import annotations

import stripe

from app.integrations.payments.base import StripeProvider, PaymentIntentResult
from app.utils.commission import kes_to_usd_cents


def _intent_result(intent, provider: str) -> PaymentIntentResult:
    intent_id = str(getattr(intent, "id", "") or "")
    status = str(getattr(intent, "status", "") or "")
    return PaymentIntentResult(
        intent_id=intent_id,
        client_secret=str(getattr(intent, "client_secret", "") or ""),
        status=status,
        amount_cents=int(getattr(intent, "amount", 0) or 0),
        provider=provider,
        raw={"id": intent_id, "status": status},
    )


class StripePaymentsProvider(StripeProvider):
    name = "stripe"

    def __init__(self, *, secret_key: str, webhook_secret: str = ""):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    def create_intent(self, *, amount_ksh: float, order_id: int, metadata: dict | None = None) -> PaymentIntentResult:
        meta = {"order_id": str(order_id), "amount_ksh": str(amount_ksh)}
        meta.update({k: str(v) for k, v in (metadata or {}).items()})
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=kes_to_usd_cents(amount_ksh),
                currency="usd",
                automatic_payment_methods={"enabled": True},
                metadata=meta,
            )
        except stripe.StripeError as e:
            raise RuntimeError(f"STRIPE_INTENT_FAILED:{getattr(e, 'user_message', None) or str(e)}")
        return _intent_result(intent, self.name)

    def retrieve_intent(self, intent_id: str) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise RuntimeError(f"STRIPE_RETRIEVE_FAILED:{str(e)}")
        return _intent_result(intent, self.name)

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Raises ValueError for malformed payloads and stripe.SignatureVerificationError for bad signatures."""
        event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        if hasattr(event, "to_dict"):
            return event.to_dict()
        return dict(event)
