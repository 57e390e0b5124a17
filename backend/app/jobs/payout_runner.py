from __future__ import annotations

from datetime import datetime

from flask import current_app

from app.extensions import db
from app.services.payout_service import process_auto_payout, vendors_due_for_payout
from app.utils.job_runs import record_job_run
from app.utils.platform_settings import get_settings


def run_payout_sweep(*, limit: int = 200) -> dict:
    """Pay out every vendor whose balance has reached the automatic minimum."""
    started_at = datetime.utcnow()
    settings = get_settings()
    processed = paid = failed = skipped = errors = 0
    for vendor_id in vendors_due_for_payout()[: int(limit)]:
        processed += 1
        try:
            outcome = process_auto_payout(vendor_id, settings=settings)
        except Exception:
            errors += 1
            db.session.rollback()
            current_app.logger.exception("payout_sweep_row_failed vendor_id=%s", vendor_id)
            continue
        status = outcome.get("status")
        if status == "paid":
            paid += 1
        elif status == "failed":
            failed += 1
        else:
            skipped += 1

    result = {
        "ok": True,
        "processed": processed,
        "paid": paid,
        "failed": failed,
        "skipped": skipped,
        "errors": errors,
        "ts": datetime.utcnow().isoformat(),
    }
    record_job_run(
        job_name="payout_sweep",
        ok=errors == 0,
        started_at=started_at,
        processed=processed,
        result=result,
        error=None if errors == 0 else f"errors={errors}",
    )
    return result

