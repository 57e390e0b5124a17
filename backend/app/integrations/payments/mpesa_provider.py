from __future__ import annotations

import base64
from datetime import datetime

import requests

from app.integrations.common import response_json
from app.integrations.payments.base import MpesaProvider, StkPushResult


SANDBOX_BASE = "https://sandbox.safaricom.co.ke"
LIVE_BASE = "https://api.safaricom.co.ke"


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


class DarajaMpesaProvider(MpesaProvider):
    name = "mpesa"

    def __init__(self, *, consumer_key: str, consumer_secret: str, shortcode: str, passkey: str, callback_url: str, base_url: str = SANDBOX_BASE):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = base_url.rstrip("/")

    def access_token(self) -> str:
        basic = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode("utf-8")).decode("ascii")
        r = requests.get(
            f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials",
            headers={"Authorization": f"Basic {basic}"},
            timeout=25,
        )
        j = response_json(r)
        token = str(j.get("access_token") or "").strip()
        if r.status_code < 200 or r.status_code >= 300 or not token:
            msg = (j.get("errorMessage") or f"HTTP {r.status_code}").strip()
            raise RuntimeError(f"MPESA_AUTH_FAILED:{msg}")
        return token

    def stk_push(self, *, phone: str, amount: float, account_reference: str, description: str = "") -> StkPushResult:
        token = self.access_token()
        timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # Daraja rejects fractional shillings.
            "Amount": int(round(float(amount))),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": (account_reference or "Solely")[:12],
            "TransactionDesc": (description or "Solely order payment")[:60],
        }
        r = requests.post(
            f"{self.base_url}/mpesa/stkpush/v1/processrequest",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json=payload,
            timeout=25,
        )
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300 or str(j.get("ResponseCode")) != "0":
            msg = (j.get("ResponseDescription") or j.get("errorMessage") or f"HTTP {r.status_code}").strip()
            raise RuntimeError(f"MPESA_STK_PUSH_FAILED:{msg}")
        return StkPushResult(
            checkout_request_id=str(j.get("CheckoutRequestID") or ""),
            merchant_request_id=str(j.get("MerchantRequestID") or ""),
            provider=self.name,
            raw=j,
        )
