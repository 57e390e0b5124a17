from __future__ import annotations

import hashlib
import hmac
import os

import requests

from app.integrations.common import response_json
from app.integrations.payments.base import PaystackProvider, PaymentInitializeResult


PAYSTACK_BASE = "https://api.paystack.co"


def paystack_signature(secret_key: str, raw: bytes) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw or b"", hashlib.sha512).hexdigest()


class PaystackPaymentsProvider(PaystackProvider):
    name = "paystack"

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        payload = {
            "email": email,
            "amount": int(round(float(amount) * 100)),
            "currency": "KES",
            "reference": reference,
            "metadata": metadata or {},
        }
        callback_url = (os.getenv("PAYSTACK_CALLBACK_URL") or "").strip()
        if callback_url:
            payload["callback_url"] = callback_url
        r = requests.post(f"{PAYSTACK_BASE}/transaction/initialize", headers=self._headers(), json=payload, timeout=25)
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300 or j.get("status") is not True:
            msg = (j.get("message") or f"HTTP {r.status_code}").strip()
            raise RuntimeError(f"PAYSTACK_INIT_FAILED:{msg}")
        data = j.get("data") or {}
        return PaymentInitializeResult(
            authorization_url=(data.get("authorization_url") or "").strip(),
            reference=(data.get("reference") or reference).strip(),
            provider=self.name,
            raw=j,
        )

    def verify_signature(self, raw: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(paystack_signature(self.secret_key, raw), signature.strip())
