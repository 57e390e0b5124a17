from __future__ import annotations

from app.jobs.escrow_runner import (
    run_auto_cancel_stale_orders,
    run_auto_dispute_unconfirmed,
    run_auto_refund_unshipped,
    run_auto_release_escrow,
)
from app.jobs.engagement_runner import run_price_drop_alerts, run_stop_stale_tracking
from app.jobs.payout_runner import run_payout_sweep


# Shared by the Celery beat tasks and POST /api/admin/jobs/<name>/run.
JOBS = {
    "auto_release_escrow": run_auto_release_escrow,
    "auto_cancel_stale_orders": run_auto_cancel_stale_orders,
    "auto_refund_unshipped": run_auto_refund_unshipped,
    "auto_dispute_unconfirmed": run_auto_dispute_unconfirmed,
    "payout_sweep": run_payout_sweep,
    "price_drop_alerts": run_price_drop_alerts,
    "stop_stale_tracking": run_stop_stale_tracking,
}


def run_job(name: str) -> dict:
    runner = JOBS.get((name or "").strip())
    if runner is None:
        raise KeyError(name)
    return runner()
