from __future__ import annotations

import json

import requests
from pywebpush import WebPushException, webpush

from app.integrations.messaging.base import MessageResult, PushProvider


PUSH_TTL_SECONDS = 86400


class WebPushProvider(PushProvider):
    name = "webpush"

    def __init__(self, *, vapid_private_key: str, vapid_subject: str):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject

    def send_push(self, *, subscription_info: dict, payload: dict) -> MessageResult:
        try:
            resp = webpush(
                subscription_info=subscription_info,
                data=json.dumps(payload, separators=(",", ":")),
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=PUSH_TTL_SECONDS,
            )
        except WebPushException as e:
            status = int(getattr(e.response, "status_code", 0) or 0)
            if status in (404, 410):
                return MessageResult(ok=False, code="PUSH_SUBSCRIPTION_EXPIRED", message=f"http_{status}", expired=True)
            return MessageResult(ok=False, code="PUSH_PROVIDER_ERROR", message=str(e)[:200])
        except requests.RequestException as e:
            return MessageResult(ok=False, code="PUSH_PROVIDER_DOWN", message=str(e)[:200])
        return MessageResult(ok=True, code="OK", message="sent", raw={"status": int(getattr(resp, "status_code", 201) or 201)})
