from __future__ import annotations

import json
import re
from datetime import datetime

from flask import current_app

from app.extensions import db
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.payments.factory import build_intasend_provider
from app.models import CommissionLedger, Order, Payout, PlatformEvent, User, VendorBalance, VendorProfile
from app.services.errors import ServiceError
from app.utils.commission import (
    auto_payout_minimum,
    ksh_float,
    manual_payout_minimum,
    order_payout_amount,
    payout_transfer_fee,
    round_ksh,
    withdraw_fee,
)
from app.utils.events import log_event
from app.utils.phone import normalize_kenyan_phone
from app.utils.platform_settings import get_settings


def get_or_create_balance(vendor_id: int) -> VendorBalance:
    row = VendorBalance.query.filter_by(vendor_id=int(vendor_id)).first()
    if row is None:
        row = VendorBalance(vendor_id=int(vendor_id), pending_balance=0.0, total_earned=0.0, total_paid_out=0.0)
        db.session.add(row)
        db.session.flush()
    return row


def vendor_profile(vendor_id: int) -> VendorProfile | None:
    return VendorProfile.query.filter_by(user_id=int(vendor_id)).first()


def credit_vendor_balance(vendor_id: int, amount) -> VendorBalance:
    row = get_or_create_balance(vendor_id)
    row.pending_balance = ksh_float(round_ksh(row.pending_balance) + round_ksh(amount))
    row.total_earned = ksh_float(round_ksh(row.total_earned) + round_ksh(amount))
    db.session.add(row)
    return row


def record_commission(order: Order) -> CommissionLedger:
    row = CommissionLedger.query.filter_by(order_id=int(order.id)).first()
    if row is not None:
        return row
    row = CommissionLedger(
        order_id=int(order.id),
        vendor_id=int(order.vendor_id),
        commission_rate=float(order.commission_rate or 0.0),
        commission_amount=ksh_float(order.commission_amount),
        order_total=ksh_float(order.total_ksh),
        payout_amount=order_payout_amount(order),
        recorded_at=datetime.utcnow(),
    )
    db.session.add(row)
    return row


def settle_order_payout(order: Order) -> Payout:
    """Per-order settlement: pending payout record, commission ledger, balance credit.

    Idempotent per order; a second call returns the existing payout without crediting again.
    """
    existing = Payout.query.filter_by(order_id=int(order.id)).first()
    if existing is not None:
        return existing
    amount = order_payout_amount(order)
    profile = vendor_profile(int(order.vendor_id))
    method = (profile.payout_method if profile else "") or "mpesa"
    destination = profile.mpesa_number if profile and method == "mpesa" else (profile.bank_account_number if profile else None)
    payout = Payout(
        vendor_id=int(order.vendor_id),
        order_id=int(order.id),
        amount_ksh=amount,
        method=method,
        destination=destination,
        status="pending",
        trigger_type="automatic",
        fee_paid_by="platform",
    )
    db.session.add(payout)
    record_commission(order)
    credit_vendor_balance(int(order.vendor_id), amount)
    db.session.flush()
    log_event(
        "payout_created",
        order_id=int(order.id),
        idempotency_key=f"payout:order:{int(order.id)}",
        metadata={"vendor_id": int(order.vendor_id), "amount_ksh": amount},
    )
    return payout


def _settle_pending_order_payouts(vendor_id: int, *, status: str, reference: str) -> int:
    rows = Payout.query.filter(
        Payout.vendor_id == int(vendor_id),
        Payout.order_id.isnot(None),
        Payout.status == "pending",
    ).all()
    now = datetime.utcnow()
    for row in rows:
        row.status = status
        row.reference = reference[:128] if reference else row.reference
        row.processed_at = now
        db.session.add(row)
    return len(rows)


def process_auto_payout(vendor_id: int, *, settings=None) -> dict:
    """Pay a vendor's full balance to M-Pesa. The platform absorbs the transfer fee."""
    s = settings or get_settings()
    if not bool(getattr(s, "auto_payouts_enabled", False)):
        return {"ok": False, "status": "skipped", "reason": "AUTO_PAYOUTS_DISABLED"}
    profile = vendor_profile(vendor_id)
    phone = normalize_kenyan_phone(profile.mpesa_number if profile else "")
    if not phone:
        return {"ok": False, "status": "skipped", "reason": "NO_MPESA_NUMBER"}
    balance = get_or_create_balance(vendor_id)
    amount = ksh_float(balance.pending_balance)
    if amount < auto_payout_minimum():
        return {"ok": False, "status": "skipped", "reason": "BELOW_MINIMUM", "balance": amount}
    try:
        provider = build_intasend_provider(s)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return {"ok": False, "status": "skipped", "reason": str(e)}

    vendor = db.session.get(User, int(vendor_id))
    payout = Payout(
        vendor_id=int(vendor_id),
        amount_ksh=amount,
        method="mpesa",
        destination=phone,
        trigger_type="automatic",
        fee_paid_by="platform",
        transfer_fee_ksh=float(payout_transfer_fee()),
        balance_before=amount,
    )
    try:
        result = provider.send_money(
            name=(vendor.name if vendor else "") or (profile.store_name if profile else "Vendor"),
            account=phone,
            amount=amount,
            narrative="Solely Kenya payout",
        )
    except RuntimeError as e:
        payout.status = "failed"
        payout.failure_reason = str(e)[:240]
        payout.processed_at = datetime.utcnow()
        db.session.add(payout)
        db.session.commit()
        current_app.logger.warning(json.dumps({"event": "auto_payout_failed", "vendor_id": int(vendor_id), "error": str(e)[:200]}))
        return {"ok": False, "status": "failed", "reason": str(e), "payout": payout.to_dict()}

    now = datetime.utcnow()
    reference = result.reference or f"auto-{int(now.timestamp())}"
    payout.status = "paid"
    payout.reference = reference
    payout.processed_at = now
    db.session.add(payout)
    balance.pending_balance = 0.0
    balance.total_paid_out = ksh_float(round_ksh(balance.total_paid_out) + round_ksh(amount))
    balance.last_payout_at = now
    db.session.add(balance)
    _settle_pending_order_payouts(vendor_id, status="paid", reference=reference)
    db.session.flush()
    log_event(
        "payout_paid",
        idempotency_key=f"payout:{int(payout.id)}:paid",
        metadata={"vendor_id": int(vendor_id), "amount_ksh": amount, "reference": reference, "trigger": "automatic"},
    )
    db.session.commit()
    return {"ok": True, "status": "paid", "payout": payout.to_dict()}


def request_manual_payout(vendor_id: int) -> Payout:
    """Vendor-initiated payout of the whole balance, less the transfer fee, for manual processing."""
    balance = get_or_create_balance(vendor_id)
    amount = ksh_float(balance.pending_balance)
    minimum = manual_payout_minimum()
    if amount < minimum:
        raise ServiceError(
            "BELOW_MINIMUM",
            f"Minimum manual payout is KES {minimum}. Current balance: KES {amount:,.2f}",
            400,
            balance=amount,
        )
    profile = vendor_profile(vendor_id)
    fee = payout_transfer_fee()
    net = ksh_float(round_ksh(amount) - round_ksh(fee))
    method = (profile.payout_method if profile else "") or "mpesa"
    destination = normalize_kenyan_phone(profile.mpesa_number) if profile and method == "mpesa" else (profile.bank_account_number if profile else None)
    if not destination:
        raise ServiceError("PAYOUT_DESTINATION_MISSING", "Add your M-Pesa number or bank details before requesting a payout", 400)
    payout = Payout(
        vendor_id=int(vendor_id),
        amount_ksh=net,
        method=method,
        destination=destination,
        status="processing",
        trigger_type="manual",
        fee_paid_by="vendor",
        transfer_fee_ksh=float(fee),
        balance_before=amount,
    )
    db.session.add(payout)
    balance.pending_balance = 0.0
    balance.total_paid_out = ksh_float(round_ksh(balance.total_paid_out) + round_ksh(net))
    db.session.add(balance)
    _settle_pending_order_payouts(vendor_id, status="processing", reference="")
    db.session.flush()
    log_event(
        "payout_requested",
        actor_user_id=int(vendor_id),
        idempotency_key=f"payout:{int(payout.id)}:requested",
        metadata={"amount_ksh": net, "fee_ksh": fee, "balance_before": amount},
    )
    db.session.commit()
    return payout


def mark_payout_paid(payout: Payout, *, reference: str = "", actor_id: int | None = None) -> Payout:
    if payout.status not in ("pending", "processing"):
        raise ServiceError("INVALID_PAYOUT_STATUS", f"Payout is {payout.status}", 409)
    now = datetime.utcnow()
    payout.status = "paid"
    payout.reference = (reference or payout.reference or f"manual-{int(now.timestamp())}")[:128]
    payout.processed_at = now
    db.session.add(payout)
    if payout.order_id is None:
        balance = get_or_create_balance(int(payout.vendor_id))
        balance.last_payout_at = now
        processing_rows = Payout.query.filter(
            Payout.vendor_id == int(payout.vendor_id),
            Payout.order_id.isnot(None),
            Payout.status == "processing",
        ).all()
        for row in processing_rows:
            row.status = "paid"
            row.processed_at = now
    log_event(
        "payout_paid",
        actor_user_id=actor_id,
        idempotency_key=f"payout:{int(payout.id)}:paid",
        metadata={"amount_ksh": float(payout.amount_ksh or 0.0), "reference": payout.reference, "trigger": payout.trigger_type},
    )
    db.session.commit()
    return payout


def mark_payout_failed(payout: Payout, *, reason: str = "", actor_id: int | None = None) -> Payout:
    """Fail a manual payout and restore what it took from the vendor balance."""
    if payout.status not in ("pending", "processing"):
        raise ServiceError("INVALID_PAYOUT_STATUS", f"Payout is {payout.status}", 409)
    payout.status = "failed"
    payout.failure_reason = (reason or "marked failed by admin")[:240]
    payout.processed_at = datetime.utcnow()
    db.session.add(payout)
    if payout.order_id is None and payout.trigger_type == "manual":
        balance = get_or_create_balance(int(payout.vendor_id))
        restored = round_ksh(payout.amount_ksh) + round_ksh(payout.transfer_fee_ksh)
        balance.pending_balance = ksh_float(round_ksh(balance.pending_balance) + restored)
        balance.total_paid_out = ksh_float(max(round_ksh(0), round_ksh(balance.total_paid_out) - round_ksh(payout.amount_ksh)))
        db.session.add(balance)
        for row in Payout.query.filter(
            Payout.vendor_id == int(payout.vendor_id),
            Payout.order_id.isnot(None),
            Payout.status == "processing",
        ).all():
            row.status = "pending"
            row.processed_at = None
    log_event(
        "payout_failed",
        actor_user_id=actor_id,
        idempotency_key=f"payout:{int(payout.id)}:failed",
        metadata={"reason": payout.failure_reason},
    )
    db.session.commit()
    return payout


def withdraw_to_mpesa(vendor_id: int, *, settings=None) -> dict:
    """Withdraw the entire balance from the vendor's IntaSend wallet to M-Pesa, less the tiered fee."""
    s = settings or get_settings()
    profile = vendor_profile(vendor_id)
    if profile is None or not (profile.intasend_wallet_id or "").strip():
        raise ServiceError("WALLET_NOT_FOUND", "Create a wallet before withdrawing", 400)
    phone = normalize_kenyan_phone(profile.mpesa_number)
    if not phone:
        raise ServiceError("NO_MPESA_NUMBER", "Add an M-Pesa number to your profile", 400)
    balance = get_or_create_balance(vendor_id)
    total = round_ksh(balance.pending_balance)
    if total <= 0:
        raise ServiceError("NO_BALANCE", "No balance available for withdrawal", 400)
    fee = withdraw_fee(total)
    net = total - round_ksh(fee)
    if net <= 0:
        raise ServiceError("INSUFFICIENT_BALANCE", f"Insufficient balance to cover the KES {fee} transaction fee.", 400, fee=fee)

    provider = build_intasend_provider(s)
    vendor = db.session.get(User, int(vendor_id))
    result = provider.send_money(
        name=(vendor.name if vendor else "") or "Vendor",
        account=phone,
        amount=float(net),
        narrative="Solely Kenya withdrawal",
        wallet_id=profile.intasend_wallet_id,
    )
    now = datetime.utcnow()
    payout = Payout(
        vendor_id=int(vendor_id),
        amount_ksh=float(net),
        method="mpesa",
        destination=phone,
        status="paid",
        trigger_type="manual",
        fee_paid_by="vendor",
        transfer_fee_ksh=float(fee),
        balance_before=float(total),
        reference=(result.reference or f"withdraw-{int(now.timestamp())}")[:128],
        processed_at=now,
    )
    db.session.add(payout)
    balance.pending_balance = ksh_float(max(round_ksh(0), round_ksh(balance.pending_balance) - total))
    balance.total_paid_out = ksh_float(round_ksh(balance.total_paid_out) + net)
    balance.last_payout_at = now
    db.session.add(balance)
    _settle_pending_order_payouts(vendor_id, status="paid", reference=payout.reference)
    db.session.commit()
    return {
        "amount": float(total),
        "net_amount": float(net),
        "fee": fee,
        "new_balance": float(balance.pending_balance or 0.0),
        "payout": payout.to_dict(),
        "message": f"KES {float(net):,.2f} sent to your M-Pesa. Fee: KES {fee}",
    }


def _wallet_label(profile: VendorProfile | None, vendor_id: int) -> str:
    name = (profile.store_name if profile else "") or ""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return f"solely-{slug or vendor_id}"


def create_vendor_wallet(vendor_id: int, *, settings=None) -> VendorProfile:
    profile = vendor_profile(vendor_id)
    if profile is None:
        raise ServiceError("VENDOR_PROFILE_NOT_FOUND", "Vendor profile not found", 404)
    if (profile.intasend_wallet_id or "").strip():
        return profile
    provider = build_intasend_provider(settings or get_settings())
    label = _wallet_label(profile, vendor_id)
    result = provider.create_wallet(label=label)
    profile.intasend_wallet_id = result.wallet_id
    profile.intasend_wallet_label = label
    db.session.add(profile)
    log_event(
        "vendor_wallet_created",
        actor_user_id=int(vendor_id),
        idempotency_key=f"wallet:{int(vendor_id)}",
        metadata={"wallet_id": result.wallet_id, "label": label},
    )
    db.session.commit()
    return profile


def transfer_to_vendor_wallet(order_id: int, *, settings=None) -> dict:
    """Move the vendor share of a completed order from the settlement wallet into the vendor wallet.

    The `wallet_transfer:<order_id>` event is committed before the provider call, so a
    retried task returns the stored result instead of moving the money again. A provider
    failure removes the marker so the retry can try again.
    """
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise ServiceError("ORDER_NOT_FOUND", "Order not found", 404)
    key = f"wallet_transfer:{int(order.id)}"
    existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
    if existing is not None:
        meta = existing.metadata_dict()
        return {
            "ok": True,
            "order_id": int(order.id),
            "amount": meta.get("amount_ksh"),
            "wallet_id": meta.get("wallet_id"),
            "reference": meta.get("reference"),
            "status": meta.get("status") or "sent",
            "already_transferred": True,
        }

    s = settings or get_settings()
    profile = create_vendor_wallet(int(order.vendor_id), settings=s)
    amount = order_payout_amount(order)
    provider = build_intasend_provider(s)
    marker = log_event(
        "vendor_wallet_transfer",
        order_id=int(order.id),
        idempotency_key=key,
        metadata={"wallet_id": profile.intasend_wallet_id, "amount_ksh": amount, "status": "started"},
    )
    db.session.commit()
    try:
        result = provider.intra_transfer(
            to_wallet_id=profile.intasend_wallet_id,
            amount=amount,
            narrative=f"Order {int(order.id)} - vendor share",
        )
    except RuntimeError:
        if marker is not None:
            db.session.delete(marker)
            db.session.commit()
        raise
    if marker is not None:
        marker.metadata_json = json.dumps(
            {"wallet_id": profile.intasend_wallet_id, "amount_ksh": amount, "status": "sent", "reference": result.reference}
        )
        db.session.add(marker)
    db.session.commit()
    return {"ok": True, "order_id": int(order.id), "amount": amount, "wallet_id": profile.intasend_wallet_id, "reference": result.reference}


def vendor_balance_summary(vendor_id: int, *, limit: int = 50) -> dict:
    balance = get_or_create_balance(vendor_id)
    db.session.commit()
    payouts = (
        Payout.query.filter_by(vendor_id=int(vendor_id))
        .order_by(Payout.created_at.desc(), Payout.id.desc())
        .limit(max(1, min(int(limit or 50), 200)))
        .all()
    )
    return {
        "balance": balance.to_dict(),
        "auto_payout_minimum": auto_payout_minimum(),
        "manual_payout_minimum": manual_payout_minimum(),
        "payout_fee": payout_transfer_fee(),
        "payouts": [p.to_dict() for p in payouts],
    }


def vendors_due_for_payout() -> list[int]:
    rows = (
        VendorBalance.query.filter(VendorBalance.pending_balance >= float(auto_payout_minimum()))
        .order_by(VendorBalance.vendor_id.asc())
        .all()
    )
    return [int(r.vendor_id) for r in rows]
