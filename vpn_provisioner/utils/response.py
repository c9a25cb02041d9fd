from typing import Any

from ..models import ProvisioningOutcome



def ok_response(title: str, message: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "ok": True,
        "code": "ok",
        "title": title,
        "message": message,
        "data": data or {},
    }



def error_response(code: str, title: str, message: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "ok": False,
        "code": code,
        "title": title,
        "message": message,
        "data": data or {},
    }



def outcome_response(title: str, outcome: ProvisioningOutcome, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    data = outcome.as_data()
    data.update(extra or {})
    if outcome.ok:
        return ok_response(title, outcome.message, data)
    return error_response(outcome.category.value, title, outcome.message, data)
