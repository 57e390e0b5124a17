from __future__ import annotations

from datetime import datetime

from app.extensions import db
from app.models import JobRun
from app.utils.events import safe_json


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    processed: int = 0,
    result: dict | None = None,
    error: str | None = None,
) -> JobRun | None:
    duration_ms: int | None = None
    try:
        duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    except (TypeError, AttributeError):
        duration_ms = None
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            processed=int(processed or 0),
            result_json=safe_json(result or {}),
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        db.session.rollback()
        return None


def recent_job_runs(*, job_name: str | None = None, limit: int = 50) -> list[JobRun]:
    q = JobRun.query
    if job_name:
        q = q.filter_by(job_name=job_name)
    return q.order_by(JobRun.ran_at.desc(), JobRun.id.desc()).limit(max(1, min(int(limit or 50), 200))).all()
