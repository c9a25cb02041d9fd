from __future__ import annotations

from .models import FailureCategory


class ProvisioningError(Exception):
    """Base for every classified provisioning failure."""

    category = FailureCategory.GENERIC

    def __init__(self, message: str, *, detail: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(ProvisioningError):
    category = FailureCategory.VALIDATION


class HostConnectionError(ProvisioningError):
    """Session could not be established.

    ``kind`` is one of ``unreachable`` (DNS / no route), ``refused``
    (connection refused or timed out while connecting) or ``generic``.
    """

    KINDS = ("unreachable", "refused", "generic")

    def __init__(self, message: str, *, kind: str = "generic", detail: str = "") -> None:
        super().__init__(message, detail=detail)
        self.kind = kind if kind in self.KINDS else "generic"

    @property
    def category(self) -> FailureCategory:  # type: ignore[override]
        if self.kind == "unreachable":
            return FailureCategory.HOST_UNREACHABLE
        if self.kind == "refused":
            return FailureCategory.HOST_REFUSED
        return FailureCategory.CONNECTION


class HostAuthError(ProvisioningError):
    category = FailureCategory.AUTH


class RemoteScriptError(ProvisioningError):
    category = FailureCategory.REMOTE_SCRIPT


class SessionTimeoutError(ProvisioningError):
    category = FailureCategory.TIMEOUT


class ParseError(ProvisioningError):
    category = FailureCategory.PARSE
