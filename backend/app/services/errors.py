from __future__ import annotations


class ServiceError(Exception):
    """Business-rule violation raised by the service layer.

    Routes render it as {"ok": False, "error": code, "message": message} with `status`.
    """

    def __init__(self, code: str, message: str = "", status: int = 400, **extra):
        super().__init__(f"{code}:{message}" if message else code)
        self.code = code
        self.message = message or code
        self.status = int(status)
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"ok": False, "error": self.code, "message": self.message}
        payload.update(self.extra)
        return payload
