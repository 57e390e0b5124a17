from __future__ import annotations

import json
from datetime import datetime

from app.extensions import db
from app.models import EscrowTransaction, EscrowTransition, Order, Payment
from app.utils.commission import ksh_float, order_payout_amount
from app.utils.events import log_event


class EscrowStatus:
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"
    WITHHELD = "withheld"

    TERMINAL = {RELEASED, REFUNDED}
    ALLOWED = {
        HELD: {HELD, RELEASED, REFUNDED, WITHHELD},
        WITHHELD: {WITHHELD, RELEASED, REFUNDED},
        RELEASED: {RELEASED},
        REFUNDED: {REFUNDED},
    }


class EscrowTransitionError(ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"invalid_escrow_transition {current}->{target}")
        self.current = current
        self.target = target


def _parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        actor_type = str(actor.get("type") or "system")
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return actor_type, actor_id
    return "system", None


def get_escrow(order_id: int) -> EscrowTransaction | None:
    return EscrowTransaction.query.filter_by(order_id=int(order_id)).first()


def transition_escrow(
    escrow: EscrowTransaction,
    to_state: str,
    *,
    idempotency_key: str,
    actor=None,
    reason: str = "",
    metadata: dict | None = None,
) -> EscrowTransition | None:
    """Move an escrow row and append the audit entry. Flushes, never commits.

    Replaying the same key returns the original audit row. A move to the
    current state is a no-op and returns None.
    """
    if escrow is None:
        raise ValueError("escrow required")
    key = (idempotency_key or "").strip()[:160]
    if not key:
        raise ValueError("idempotency_key required")

    if escrow.id is not None:
        existing = EscrowTransition.query.filter_by(escrow_id=int(escrow.id), idempotency_key=key).first()
        if existing:
            return existing

    current = (escrow.status or EscrowStatus.HELD).strip().lower()
    target = (to_state or "").strip().lower()
    if target not in EscrowStatus.ALLOWED.get(current, {current}):
        raise EscrowTransitionError(current, target)
    if target == current:
        return None

    now = datetime.utcnow()
    escrow.status = target
    if target == EscrowStatus.RELEASED:
        escrow.released_at = now
    elif target == EscrowStatus.REFUNDED:
        escrow.refunded_at = now
    elif target == EscrowStatus.WITHHELD:
        escrow.withheld_at = now
    if reason:
        escrow.notes = reason[:240]
    db.session.add(escrow)
    db.session.flush()

    actor_type, actor_id = _parse_actor(actor)
    row = EscrowTransition(
        escrow_id=int(escrow.id),
        order_id=int(escrow.order_id),
        from_status=current,
        to_status=target,
        actor_type=actor_type[:32],
        actor_id=actor_id,
        idempotency_key=key,
        reason=(reason or "")[:240],
        metadata_json=json.dumps(metadata or {}, default=str)[:4000],
        created_at=now,
    )
    db.session.add(row)
    db.session.flush()
    log_event(
        f"escrow_{target}",
        actor_user_id=actor_id,
        order_id=int(escrow.order_id),
        idempotency_key=f"escrow:{int(escrow.id)}:{key}",
        metadata={"from": current, "to": target, "reason": reason},
    )
    return row


def hold_escrow(order: Order, payment: Payment | None = None, *, actor=None) -> EscrowTransaction:
    """Ensure the order has a held escrow row mirroring its totals."""
    escrow = get_escrow(int(order.id))
    if escrow is not None:
        if payment is not None and escrow.payment_id is None:
            escrow.payment_id = int(payment.id)
        return escrow
    escrow = EscrowTransaction(
        order_id=int(order.id),
        payment_id=int(payment.id) if payment is not None and payment.id is not None else None,
        status=EscrowStatus.HELD,
        held_amount=ksh_float(order.total_ksh),
        commission_amount=ksh_float(order.commission_amount),
        release_amount=order_payout_amount(order),
        held_at=datetime.utcnow(),
    )
    db.session.add(escrow)
    db.session.flush()
    actor_type, actor_id = _parse_actor(actor)
    db.session.add(
        EscrowTransition(
            escrow_id=int(escrow.id),
            order_id=int(order.id),
            from_status="none",
            to_status=EscrowStatus.HELD,
            actor_type=actor_type,
            actor_id=actor_id,
            idempotency_key=f"order:{int(order.id)}:hold",
            reason="order_created",
        )
    )
    db.session.flush()
    return escrow


def refresh_escrow_amounts(order: Order) -> EscrowTransaction | None:
    escrow = get_escrow(int(order.id))
    if escrow is None or escrow.status not in (EscrowStatus.HELD, EscrowStatus.WITHHELD):
        return escrow
    escrow.held_amount = ksh_float(order.total_ksh)
    escrow.commission_amount = ksh_float(order.commission_amount)
    escrow.release_amount = order_payout_amount(order)
    db.session.add(escrow)
    return escrow


def release_escrow(order: Order, *, actor=None, reason: str = "", idempotency_key: str | None = None, settle: bool = True):
    """Release funds to the vendor and run settlement (payout, ledger, balance).

    Returns the settlement Payout, or None when settlement is skipped.
    """
    from app.services.payout_service import settle_order_payout

    escrow = hold_escrow(order, actor=actor)
    transition_escrow(
        escrow,
        EscrowStatus.RELEASED,
        idempotency_key=idempotency_key or f"order:{int(order.id)}:release",
        actor=actor,
        reason=reason or "released",
    )
    if not settle:
        return None
    return settle_order_payout(order)


def refund_escrow(order: Order, *, actor=None, reason: str = "", idempotency_key: str | None = None) -> EscrowTransaction | None:
    escrow = get_escrow(int(order.id))
    if escrow is None:
        return None
    transition_escrow(
        escrow,
        EscrowStatus.REFUNDED,
        idempotency_key=idempotency_key or f"order:{int(order.id)}:refund",
        actor=actor,
        reason=reason or "refunded",
    )
    return escrow


def withhold_escrow(order: Order, *, actor=None, reason: str = "", idempotency_key: str | None = None) -> EscrowTransaction:
    escrow = hold_escrow(order, actor=actor)
    transition_escrow(
        escrow,
        EscrowStatus.WITHHELD,
        idempotency_key=idempotency_key or f"order:{int(order.id)}:withhold",
        actor=actor,
        reason=reason or "dispute_opened",
    )
    return escrow
