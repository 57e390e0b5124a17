from __future__ import annotations

import json
import os

from flask import current_app


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def celery_queue_enabled() -> bool:
    broker_configured = bool((os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or "").strip())
    return _env_bool("CELERY_TASKS_ENABLED", broker_configured)


def enqueue(task, inline, **kwargs) -> str:
    """Queue `task` on Celery, or run `inline(**kwargs)` in-process when no broker is reachable."""
    if celery_queue_enabled():
        try:
            task.delay(**kwargs)
            return "queued"
        except Exception as e:
            current_app.logger.warning(
                json.dumps({"event": "celery_enqueue_failed", "task_name": getattr(task, "name", ""), "error": str(e)[:200]})
            )
    inline(**kwargs)
    return "inline"
