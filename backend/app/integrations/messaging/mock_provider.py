from __future__ import annotations

import os

from app.integrations.messaging.base import EmailProvider, MessageResult, PushProvider


def _force_failure(text: str) -> bool:
    return "[fail]" in (text or "").lower() or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"


class MockEmailProvider(EmailProvider):
    name = "mock"

    def __init__(self):
        self.sent: list[dict] = []

    def send_email(self, *, to: str, subject: str, html: str, reference: str = "") -> MessageResult:
        if _force_failure(subject):
            return MessageResult(ok=False, code="RESEND_PROVIDER_DOWN", message="mock forced failure")
        self.sent.append({"to": to, "subject": subject, "reference": reference})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})


class MockPushProvider(PushProvider):
    name = "mock"

    def send_push(self, *, subscription_info: dict, payload: dict) -> MessageResult:
        endpoint = str((subscription_info or {}).get("endpoint") or "")
        if "expired" in endpoint:
            return MessageResult(ok=False, code="PUSH_SUBSCRIPTION_EXPIRED", message="http_410", expired=True)
        if _force_failure(str((payload or {}).get("title") or "")):
            return MessageResult(ok=False, code="PUSH_PROVIDER_ERROR", message="mock forced failure")
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"endpoint": endpoint})
