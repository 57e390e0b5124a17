from __future__ import annotations

from datetime import datetime

from app.extensions import db
from app.models import Dispute, Order, User
from app.services.errors import ServiceError
from app.services.escrow_service import EscrowTransitionError, withhold_escrow
from app.services.notification_service import dispatch, dispatch_admins
from app.services.order_service import OrderStatus, complete_order, get_order_or_404, require_buyer, transition_order
from app.utils.events import log_event


REASONS = ("no_delivery", "wrong_item", "damaged", "other")
REASON_LABELS = {
    "no_delivery": "Item not delivered",
    "wrong_item": "Wrong item received",
    "damaged": "Item damaged",
    "other": "Other",
}
RESOLUTIONS = ("refund", "release")
ACTIVE = ("open", "under_review")


def active_dispute(order_id: int) -> Dispute | None:
    return Dispute.query.filter(Dispute.order_id == int(order_id), Dispute.status.in_(ACTIVE)).first()


def get_dispute_or_404(dispute_id: int) -> Dispute:
    dispute = db.session.get(Dispute, int(dispute_id))
    if dispute is None:
        raise ServiceError("DISPUTE_NOT_FOUND", "Dispute not found", 404)
    return dispute


def create_dispute(order: Order, *, reason: str, description: str = "", evidence_urls=None, source: str = "buyer", actor_id: int | None = None) -> Dispute:
    """Open a dispute, move the order to disputed and withhold escrow. Flushes only."""
    reason = (reason or "").strip().lower()
    if reason not in REASONS:
        raise ServiceError("INVALID_REASON", f"reason must be one of {', '.join(REASONS)}", 400)
    if order.status not in OrderStatus.DISPUTABLE:
        raise ServiceError("ORDER_NOT_DISPUTABLE", "This order cannot be disputed in its current state", 409, current_status=order.status)
    if active_dispute(int(order.id)) is not None:
        raise ServiceError("DISPUTE_ALREADY_OPEN", "There is already an open dispute for this order", 409)

    dispute = Dispute(
        order_id=int(order.id),
        customer_id=int(order.customer_id),
        vendor_id=int(order.vendor_id),
        reason=reason,
        description=(description or "").strip() or None,
        status="open",
        source=source,
    )
    dispute.evidence_urls = evidence_urls if isinstance(evidence_urls, list) else []
    db.session.add(dispute)
    transition_order(order, OrderStatus.DISPUTED)
    actor = {"type": "system" if source == "system" else "user", "id": actor_id}
    try:
        withhold_escrow(order, actor=actor, reason=f"dispute:{reason}")
    except EscrowTransitionError as e:
        raise ServiceError("ESCROW_NOT_WITHHOLDABLE", str(e), 409)
    db.session.flush()
    log_event(
        "dispute_opened",
        actor_user_id=actor_id,
        order_id=int(order.id),
        severity="WARN",
        idempotency_key=f"dispute:{int(dispute.id)}:opened",
        metadata={"reason": reason, "source": source},
    )
    return dispute


def open_dispute(order: Order, user: User, *, reason: str, description: str = "", evidence_urls=None) -> Dispute:
    require_buyer(order, user)
    try:
        dispute = create_dispute(order, reason=reason, description=description, evidence_urls=evidence_urls, source="buyer", actor_id=int(user.id))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    context = {"reason_label": REASON_LABELS[dispute.reason]}
    dispatch("dispute_filed", db.session.get(User, int(order.vendor_id)), order=order, context=context)
    dispatch("dispute_filed", user, order=order, context=context)
    dispatch_admins("dispute_filed", order=order, context=context)
    return dispute


def respond_to_dispute(dispute: Dispute, user: User, *, response: str) -> Dispute:
    if not user.is_admin and int(dispute.vendor_id) != int(user.id):
        raise ServiceError("FORBIDDEN", "Only the vendor can respond to this dispute", 403)
    response = (response or "").strip()
    if not response:
        raise ServiceError("RESPONSE_REQUIRED", "response is required", 400)
    if not dispute.is_active:
        raise ServiceError("DISPUTE_NOT_ACTIVE", "This dispute is already resolved", 409)
    dispute.vendor_response = response
    dispute.vendor_responded_at = datetime.utcnow()
    dispute.status = "under_review"
    log_event("dispute_vendor_response", actor_user_id=int(user.id), order_id=int(dispute.order_id), idempotency_key=f"dispute:{int(dispute.id)}:responded")
    db.session.commit()
    return dispute


def resolve_dispute(dispute: Dispute, admin: User, *, resolution: str, notes: str = "") -> Dispute:
    """Admin decision: refund the buyer or release funds to the vendor."""
    resolution = (resolution or "").strip().lower()
    if resolution not in RESOLUTIONS:
        raise ServiceError("INVALID_RESOLUTION", "resolution must be refund or release", 400)
    if not dispute.is_active:
        raise ServiceError("DISPUTE_NOT_ACTIVE", "This dispute is already resolved", 409)
    order = get_order_or_404(int(dispute.order_id))
    notes = (notes or "").strip()

    if resolution == "refund":
        from app.services.payment_service import process_refund

        process_refund(order, reason=dispute.reason, actor=admin)
        dispute.status = "resolved_refund"
    else:
        try:
            complete_order(order, actor=admin, reason="dispute_released")
        except Exception:
            db.session.rollback()
            raise
        dispute.status = "resolved_release"
    dispute.resolution_notes = notes or None
    dispute.resolved_by = int(admin.id)
    dispute.resolved_at = datetime.utcnow()
    log_event(
        "dispute_resolved",
        actor_user_id=int(admin.id),
        order_id=int(order.id),
        idempotency_key=f"dispute:{int(dispute.id)}:resolved",
        metadata={"resolution": resolution},
    )
    db.session.commit()

    context = {
        "dispute_title": "Dispute Resolved",
        "resolution_label": "refund issued to the buyer" if resolution == "refund" else "funds released to the vendor",
        "notes": notes,
    }
    dispatch("dispute_update", db.session.get(User, int(dispute.customer_id)), order=order, context=context)
    dispatch("dispute_update", db.session.get(User, int(dispute.vendor_id)), order=order, context=context)
    return dispute


def list_user_disputes(user: User) -> list[Dispute]:
    return (
        Dispute.query.filter((Dispute.customer_id == int(user.id)) | (Dispute.vendor_id == int(user.id)))
        .order_by(Dispute.created_at.desc(), Dispute.id.desc())
        .all()
    )


def list_all_disputes(*, status: str | None = None) -> list[Dispute]:
    q = Dispute.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Dispute.created_at.desc(), Dispute.id.desc()).all()
