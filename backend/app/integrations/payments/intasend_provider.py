from __future__ import annotations

import requests

from app.integrations.common import response_json
from app.integrations.payments.base import CheckoutResult, IntaSendProvider, TransferResult, WalletResult


INTASEND_BASE = "https://api.intasend.com/api/v1"


def _error_detail(j: dict, status: int) -> str:
    for key in ("detail", "message", "error", "errors"):
        value = j.get(key)
        if value:
            return str(value)[:200]
    return f"HTTP {status}"


class IntaSendPaymentsProvider(IntaSendProvider):
    name = "intasend"

    def __init__(self, *, secret_key: str, publishable_key: str, settlement_wallet_id: str = "", base_url: str = INTASEND_BASE):
        self.secret_key = secret_key
        self.publishable_key = publishable_key
        self.settlement_wallet_id = settlement_wallet_id
        self.base_url = base_url.rstrip("/")

    def _auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _post(self, path: str, payload: dict, *, op: str, authenticated: bool = True) -> dict:
        headers = self._auth_headers() if authenticated else {"Content-Type": "application/json"}
        r = requests.post(f"{self.base_url}{path}", headers=headers, json=payload, timeout=25)
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300:
            raise RuntimeError(f"INTASEND_{op}_FAILED:{_error_detail(j, r.status_code)}")
        return j

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
        payload = {
            "public_key": self.publishable_key,
            "amount": float(amount),
            "currency": "KES",
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "api_ref": str(order_id),
            "redirect_url": redirect_url or "https://solelyshoes.co.ke/orders",
        }
        if len(phone or "") >= 9:
            payload["phone_number"] = phone
        # Checkout is a public endpoint keyed by public_key.
        j = self._post("/checkout/", payload, op="CHECKOUT", authenticated=False)
        url = str(j.get("url") or "").strip()
        if not url:
            raise RuntimeError("INTASEND_CHECKOUT_FAILED:no checkout url returned")
        return CheckoutResult(url=url, checkout_id=str(j.get("id") or j.get("signature") or ""), provider=self.name, raw=j)

    def chargeback(self, *, invoice: str, amount: float, reason: str) -> TransferResult:
        j = self._post(
            "/chargebacks/",
            {"invoice": invoice, "amount": float(amount), "reason": reason},
            op="CHARGEBACK",
        )
        return TransferResult(
            reference=str(j.get("chargeback_id") or j.get("id") or invoice),
            status=str(j.get("status") or "PENDING"),
            provider=self.name,
            raw=j,
        )

    def create_wallet(self, *, label: str) -> WalletResult:
        j = self._post(
            "/wallets/",
            {"currency": "KES", "wallet_type": "WORKING", "label": label, "can_disburse": True},
            op="WALLET_CREATE",
        )
        wallet_id = str(j.get("wallet_id") or j.get("id") or "").strip()
        if not wallet_id:
            raise RuntimeError("INTASEND_WALLET_CREATE_FAILED:no wallet id returned")
        return WalletResult(wallet_id=wallet_id, label=label, provider=self.name, raw=j)

    def intra_transfer(self, *, to_wallet_id: str, amount: float, narrative: str) -> TransferResult:
        if not self.settlement_wallet_id:
            raise RuntimeError("INTASEND_TRANSFER_FAILED:settlement wallet not configured")
        j = self._post(
            f"/wallets/{self.settlement_wallet_id}/intra_transfer/",
            {"wallet_id": to_wallet_id, "amount": float(amount), "narrative": narrative},
            op="TRANSFER",
        )
        return TransferResult(
            reference=str(j.get("tracking_id") or j.get("id") or ""),
            status=str(j.get("status") or "COMPLETE"),
            provider=self.name,
            raw=j,
        )

    def send_money(self, *, name: str, account: str, amount: float, narrative: str, wallet_id: str | None = None) -> TransferResult:
        payload = {
            "provider": "MPESA-B2C",
            "currency": "KES",
            "requires_approval": "NO",
            "transactions": [
                {
                    "name": name or "Vendor",
                    "account": account,
                    "amount": f"{float(amount):.2f}",
                    "narrative": narrative,
                }
            ],
        }
        if wallet_id:
            payload["wallet_id"] = wallet_id
        j = self._post("/send-money/initiate/", payload, op="SEND_MONEY")
        return TransferResult(
            reference=str(j.get("tracking_id") or j.get("id") or ""),
            status=str(j.get("status") or "PENDING"),
            provider=self.name,
            raw=j,
        )
