from __future__ import annotations

import requests

from app.integrations.common import response_json
from app.integrations.messaging.base import EmailProvider, MessageResult


RESEND_URL = "https://api.resend.com/emails"
DEFAULT_SENDER = "Sole-ly Kenya <notifications@solelyshoes.co.ke>"


def _map_resend_error(status: int) -> str:
    if status in (401, 403):
        return "RESEND_AUTH_FAILED"
    if status == 429:
        return "RESEND_RATE_LIMITED"
    if status in (400, 422):
        return "RESEND_INVALID_REQUEST"
    return "RESEND_PROVIDER_DOWN"


class ResendEmailProvider(EmailProvider):
    name = "resend"

    def __init__(self, *, api_key: str, sender: str = DEFAULT_SENDER):
        self.api_key = api_key
        self.sender = sender or DEFAULT_SENDER

    def send_email(self, *, to: str, subject: str, html: str, reference: str = "") -> MessageResult:
        payload = {
            "from": self.sender,
            "to": [(to or "").strip()],
            "subject": subject,
            "html": html,
        }
        if reference:
            payload["tags"] = [{"name": "reference", "value": reference[:64]}]
        try:
            r = requests.post(
                RESEND_URL,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=12,
            )
        except requests.Timeout:
            return MessageResult(ok=False, code="RESEND_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            return MessageResult(ok=False, code="RESEND_PROVIDER_DOWN", message=str(e)[:200])
        data = response_json(r)
        if 200 <= r.status_code < 300:
            return MessageResult(ok=True, code="OK", message=str(data.get("id") or "sent"), raw=data)
        detail = str(data.get("message") or data.get("error") or f"http_{r.status_code}")
        return MessageResult(ok=False, code=_map_resend_error(r.status_code), message=detail[:200], raw=data)
