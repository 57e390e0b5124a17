from __future__ import annotations

import os


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


def integration_mode(settings) -> str:
    return (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()


def require_enabled(settings, flag: str, name: str) -> str:
    """Returns the active mode, or raises when the integration is switched off."""
    mode = integration_mode(settings)
    if mode == "disabled" or not bool(getattr(settings, flag, False)):
        raise IntegrationDisabledError(f"INTEGRATION_DISABLED:{name}")
    return mode


def require_env(*names: str) -> dict:
    values = {}
    missing = []
    for name in names:
        value = (os.getenv(name) or "").strip()
        if not value:
            missing.append(name)
        values[name] = value
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return values


def missing_env(*names: str) -> list[str]:
    return [n for n in names if not (os.getenv(n) or "").strip()]


def response_json(r) -> dict:
    if not r.content:
        return {}
    try:
        data = r.json()
    except ValueError:
        return {"raw_text": (r.text or "")[:500]}
    return data if isinstance(data, dict) else {"payload": data}
