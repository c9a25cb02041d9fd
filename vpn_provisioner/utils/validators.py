import re

from ..models import Protocol
from .response import error_response

USERNAME_RE = re.compile(r"^[A-Za-z0-9]+$")


def is_valid_username(username: object) -> bool:
    # Letters and digits only; whitespace or symbols would break the remote scripts.
    return isinstance(username, str) and bool(USERNAME_RE.match(username))


def require_param(params: dict, key: str, title: str) -> tuple[bool, str | dict]:
    value = str(params.get(key, "")).strip()
    if not value:
        return False, error_response("missing_param", title, f"Parameter '{key}' wajib diisi.")
    return True, value


def require_protocol(raw: str, title: str) -> tuple[bool, Protocol | dict]:
    proto = Protocol.parse(raw)
    if proto is None:
        allowed = "/".join(p.value for p in Protocol)
        return False, error_response("invalid_param", title, f"Protocol harus {allowed}.")
    return True, proto


def require_username(params: dict, title: str, key: str = "username") -> tuple[bool, str | dict]:
    # Format is checked by the protocol adapter so it can report a validation outcome.
    return require_param(params, key, title)


def require_positive_int_param(params: dict, key: str, title: str, minimum: int = 1) -> tuple[bool, int | dict]:
    ok, raw_or_err = require_param(params, key, title)
    if not ok:
        return False, raw_or_err
    try:
        value = int(str(raw_or_err).strip())
    except (TypeError, ValueError):
        return False, error_response("invalid_param", title, f"Parameter '{key}' harus angka bulat.")
    if value < minimum:
        return False, error_response("invalid_param", title, f"Parameter '{key}' minimal {minimum}.")
    return True, value


def optional_int_param(params: dict, key: str, title: str, default: int = 0) -> tuple[bool, int | dict]:
    raw = str(params.get(key, "")).strip()
    if not raw:
        return True, default
    try:
        value = int(raw)
    except ValueError:
        return False, error_response("invalid_param", title, f"Parameter '{key}' harus angka bulat.")
    if value < 0:
        return False, error_response("invalid_param", title, f"Parameter '{key}' tidak boleh negatif.")
    return True, value
