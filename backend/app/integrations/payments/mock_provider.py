from __future__ import annotations

import hashlib
import json
import os

from app.integrations.payments.base import (
    CheckoutResult,
    IntaSendProvider,
    MpesaProvider,
    PaymentInitializeResult,
    PaymentIntentResult,
    PaystackProvider,
    StkPushResult,
    StripeProvider,
    TransferResult,
    WalletResult,
)
from app.integrations.payments.paystack_provider import paystack_signature
from app.utils.commission import kes_to_usd_cents


MOCK_PAYSTACK_SECRET = "sk_test_solely_mock"


def _digest(*parts) -> str:
    raw = ":".join(str(p) for p in parts).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:20]


def _force_failure() -> bool:
    return (os.getenv("MOCK_PAYMENTS_FORCE_FAIL") or "").strip() == "1"


class MockMpesaProvider(MpesaProvider):
    name = "mock"

    def stk_push(self, *, phone: str, amount: float, account_reference: str, description: str = "") -> StkPushResult:
        if _force_failure():
            raise RuntimeError("MPESA_STK_PUSH_FAILED:mock forced failure")
        token = _digest("stk", phone, amount, account_reference)
        return StkPushResult(
            checkout_request_id=f"ws_CO_mock_{token}",
            merchant_request_id=f"mock-{token[:10]}",
            provider=self.name,
            raw={"phone": phone, "amount": amount, "account_reference": account_reference},
        )


class MockPaystackProvider(PaystackProvider):
    name = "mock"

    def __init__(self, secret_key: str = ""):
        self.secret_key = secret_key or MOCK_PAYSTACK_SECRET

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        if _force_failure():
            raise RuntimeError("PAYSTACK_INIT_FAILED:mock forced failure")
        return PaymentInitializeResult(
            authorization_url=f"https://example.com/mock/paystack?reference={reference}&order_id={order_id}",
            reference=reference,
            provider=self.name,
            raw={"order_id": order_id, "amount": amount, "email": email, "metadata": metadata or {}},
        )

    def verify_signature(self, raw: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        return paystack_signature(self.secret_key, raw) == signature.strip()


class MockStripeProvider(StripeProvider):
    name = "mock"

    def create_intent(self, *, amount_ksh: float, order_id: int, metadata: dict | None = None) -> PaymentIntentResult:
        if _force_failure():
            raise RuntimeError("STRIPE_INTENT_FAILED:mock forced failure")
        token = _digest("pi", order_id, amount_ksh, json.dumps(metadata or {}, sort_keys=True))
        return PaymentIntentResult(
            intent_id=f"pi_mock_{token}",
            client_secret=f"pi_mock_{token}_secret_mock",
            status="requires_payment_method",
            amount_cents=kes_to_usd_cents(amount_ksh),
            provider=self.name,
            raw={"order_id": order_id},
        )

    def retrieve_intent(self, intent_id: str) -> PaymentIntentResult:
        return PaymentIntentResult(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_mock",
            status="requires_payment_method",
            amount_cents=0,
            provider=self.name,
            raw={"id": intent_id},
        )

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        if not signature:
            raise ValueError("missing signature")
        event = json.loads((payload or b"{}").decode("utf-8"))
        if not isinstance(event, dict):
            raise ValueError("event must be an object")
        return event


class MockIntaSendProvider(IntaSendProvider):
    name = "mock"

    def checkout(
        self,
        *,
        order_id: int,
        amount: float,
        email: str,
        first_name: str,
        last_name: str,
        phone: str = "",
        redirect_url: str = "",
    ) -> CheckoutResult:
        if _force_failure():
            raise RuntimeError("INTASEND_CHECKOUT_FAILED:mock forced failure")
        token = _digest("checkout", order_id, amount)
        return CheckoutResult(
            url=f"https://example.com/mock/intasend/{token}",
            checkout_id=f"chk_{token}",
            provider=self.name,
            raw={"api_ref": str(order_id), "first_name": first_name, "last_name": last_name},
        )

    def chargeback(self, *, invoice: str, amount: float, reason: str) -> TransferResult:
        if _force_failure():
            raise RuntimeError("INTASEND_CHARGEBACK_FAILED:mock forced failure")
        return TransferResult(reference=f"cb_{_digest(invoice, amount)}", status="PENDING", provider=self.name, raw={"reason": reason})

    def create_wallet(self, *, label: str) -> WalletResult:
        return WalletResult(wallet_id=f"W{_digest('wallet', label)[:8].upper()}", label=label, provider=self.name, raw={})

    def intra_transfer(self, *, to_wallet_id: str, amount: float, narrative: str) -> TransferResult:
        if _force_failure():
            raise RuntimeError("INTASEND_TRANSFER_FAILED:mock forced failure")
        return TransferResult(reference=f"tr_{_digest(to_wallet_id, amount, narrative)}", status="COMPLETE", provider=self.name, raw={})

    def send_money(self, *, name: str, account: str, amount: float, narrative: str, wallet_id: str | None = None) -> TransferResult:
        if _force_failure():
            raise RuntimeError("INTASEND_SEND_MONEY_FAILED:mock forced failure")
        return TransferResult(
            reference=f"sm_{_digest(account, amount, narrative)}",
            status="PENDING",
            provider=self.name,
            raw={"account": account, "wallet_id": wallet_id},
        )
