from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PaymentInitializeResult:
    authorization_url: str
    reference: str
    provider: str
    raw: dict | None = None


@dataclass
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: str
    provider: str
    raw: dict | None = None


@dataclass
class PaymentIntentResult:
    intent_id: str
    client_secret: str
    status: str
    amount_cents: int
    provider: str
    raw: dict | None = None


@dataclass
class CheckoutResult:
    url: str
    checkout_id: str
    provider: str
    raw: dict | None = None


@dataclass
class TransferResult:
    reference: str
    status: str
    provider: str
    raw: dict | None = None


@dataclass
class WalletResult:
    wallet_id: str
    label: str
    provider: str
    raw: dict | None = None


class MpesaProvider:
    name = "unknown"

    def stk_push(self, *, phone: str, amount: float, account_reference: str, description: str = "") -> StkPushResult:
        raise NotImplementedError


class PaystackProvider:
    name = "unknown"

    def initialize(self, *, order_id: int | None, amount: float, email: str, reference: str, metadata: dict | None = None) -> PaymentInitializeResult:
        raise NotImplementedError

    def verify_signature(self, raw: bytes, signature: str | None) -> bool:
        raise NotImplementedError


class StripeProvider:
    name = "unknown"

    def create_intent(self, *, amount_ksh: float, order_id: int, metadata: dict | None = None) -> PaymentIntentResult:
        raise NotImplementedError

    def retrieve_intent(self, intent_id: str) -> PaymentIntentResult:
        raise NotImplementedError

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        raise NotImplementedError


class IntaSendProvider:
    name = "unknown"

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
        raise NotImplementedError

    def chargeback(self, *, invoice: str, amount: float, reason: str) -> TransferResult:
        raise NotImplementedError

    def create_wallet(self, *, label: str) -> WalletResult:
        raise NotImplementedError

    def intra_transfer(self, *, to_wallet_id: str, amount: float, narrative: str) -> TransferResult:
        raise NotImplementedError

    def send_money(self, *, name: str, account: str, amount: float, narrative: str, wallet_id: str | None = None) -> TransferResult:
        raise NotImplementedError
