from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None
    # Push endpoint reported the subscription gone (404/410).
    expired: bool = False


class EmailProvider:
    name = "unknown"

    def send_email(self, *, to: str, subject: str, html: str, reference: str = "") -> MessageResult:
        raise NotImplementedError


class PushProvider:
    name = "unknown"

    def send_push(self, *, subscription_info: dict, payload: dict) -> MessageResult:
        raise NotImplementedError
