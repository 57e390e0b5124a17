from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_kenyan_phone(phone: str | None) -> str:
    """Return an MSISDN in 2547XXXXXXXX form, or "" when nothing usable is given."""
    digits = _NON_DIGITS.sub("", str(phone or ""))
    if not digits:
        return ""
    if digits.startswith("0"):
        return "254" + digits[1:]
    if digits.startswith("254"):
        return digits
    return "254" + digits
