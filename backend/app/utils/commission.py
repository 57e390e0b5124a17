from __future__ import annotations

import os
from decimal import Decimal, ROUND_HALF_UP

DEFAULT_COMMISSION_RATE = Decimal("0.10")
# Fallback payout share when an order predates payout_amount snapshots.
LEGACY_PAYOUT_SHARE = Decimal("0.90")

AUTO_PAYOUT_MIN_KSH = 1500
MANUAL_PAYOUT_MIN_KSH = 500
PAYOUT_TRANSFER_FEE_KSH = 100
KES_TO_USD_RATE = Decimal("0.0065")

# (upper bound inclusive, fee) for wallet withdrawals; anything above the last bound pays the top fee.
WITHDRAW_FEE_TIERS = ((100, 10), (1000, 20))
WITHDRAW_FEE_TOP = 100


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = Decimal(raw)
    except Exception:
        return default
    if value < 0:
        return default
    return value


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int = 10_000_000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except Exception:
        value = int(default)
    return max(minimum, min(value, maximum))


def to_decimal(amount) -> Decimal:
    try:
        return Decimal(str(amount if amount is not None else 0))
    except Exception:
        return Decimal("0")


def round_ksh(amount) -> Decimal:
    return to_decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def ksh_float(amount) -> float:
    return float(round_ksh(amount))


def commission_rate() -> Decimal:
    rate = _env_decimal("COMMISSION_RATE", DEFAULT_COMMISSION_RATE)
    if rate > 1:
        return DEFAULT_COMMISSION_RATE
    return rate


def auto_payout_minimum() -> int:
    return _env_int("AUTO_PAYOUT_MIN_KSH", AUTO_PAYOUT_MIN_KSH, minimum=1)


def manual_payout_minimum() -> int:
    return _env_int("MANUAL_PAYOUT_MIN_KSH", MANUAL_PAYOUT_MIN_KSH, minimum=1)


def payout_transfer_fee() -> int:
    return _env_int("PAYOUT_TRANSFER_FEE_KSH", PAYOUT_TRANSFER_FEE_KSH)


def kes_to_usd_rate() -> Decimal:
    return _env_decimal("KES_TO_USD_RATE", KES_TO_USD_RATE)


def compute_order_totals(subtotal, shipping_fee, rate: Decimal | None = None) -> dict:
    """Commission applies to product value only, never to delivery."""
    r = commission_rate() if rate is None else to_decimal(rate)
    sub = round_ksh(subtotal)
    ship = round_ksh(shipping_fee)
    if ship < 0:
        ship = Decimal("0.00")
    total = round_ksh(sub + ship)
    commission = round_ksh(sub * r)
    payout = round_ksh(total - commission)
    return {
        "subtotal_ksh": float(sub),
        "shipping_fee_ksh": float(ship),
        "total_ksh": float(total),
        "commission_rate": float(r),
        "commission_amount": float(commission),
        "payout_amount": float(payout),
    }


def order_payout_amount(order) -> float:
    payout = getattr(order, "payout_amount", None)
    if payout is not None and float(payout) > 0:
        return ksh_float(payout)
    return ksh_float(to_decimal(getattr(order, "total_ksh", 0)) * LEGACY_PAYOUT_SHARE)


def withdraw_fee(amount) -> int:
    value = to_decimal(amount)
    for bound, fee in WITHDRAW_FEE_TIERS:
        if value <= bound:
            return fee
    return WITHDRAW_FEE_TOP


def kes_to_usd_cents(amount_ksh) -> int:
    usd = to_decimal(amount_ksh) * kes_to_usd_rate()
    return int((usd * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
