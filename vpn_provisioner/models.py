from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Protocol(str, Enum):
    SSH = "ssh"
    VMESS = "vmess"
    VLESS = "vless"
    TROJAN = "trojan"
    SHADOWSOCKS = "shadowsocks"
    BUNDLE = "3in1"

    @classmethod
    def parse(cls, raw: str) -> "Protocol | None":
        text = (raw or "").strip().lower()
        aliases = {"ss": "shadowsocks", "bundle": "3in1", "3-in-1": "3in1"}
        text = aliases.get(text, text)
        for member in cls:
            if member.value == text:
                return member
        return None


# Constituents of the composite account, in execution order.
BUNDLE_MEMBERS = (Protocol.VMESS, Protocol.VLESS, Protocol.TROJAN)


class Verb(str, Enum):
    CREATE = "create"
    RENEW = "renew"
    DELETE = "delete"
    TRIAL = "trial"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"


class ErrorReason(str, Enum):
    NONE = "none"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    GENERIC = "generic"


class OperationState(str, Enum):
    REQUESTED = "requested"
    CONNECTING = "connecting"
    EXECUTING = "executing"
    PARSING = "parsing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in {OperationState.SUCCEEDED, OperationState.FAILED, OperationState.TIMED_OUT}


class FailureCategory(str, Enum):
    NONE = "none"
    VALIDATION = "validation"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    SERVER_NOT_FOUND = "server_not_found"
    SERVER_FULL = "server_full"
    HOST_UNREACHABLE = "host_unreachable"
    HOST_REFUSED = "host_refused"
    AUTH = "auth"
    CONNECTION = "connection"
    REMOTE_SCRIPT = "remote_script"
    TIMEOUT = "timeout"
    PARSE = "parse"
    GENERIC = "generic"


# The caller can fix these by changing input and retrying.
ACTIONABLE_CATEGORIES = {FailureCategory.VALIDATION, FailureCategory.ALREADY_EXISTS}
# Rejected before the caller charges anything, so there is nothing to refund.
NO_REFUND_CATEGORIES = {
    FailureCategory.NONE,
    FailureCategory.VALIDATION,
    FailureCategory.SERVER_NOT_FOUND,
    FailureCategory.SERVER_FULL,
}


@dataclass
class ServerTarget:
    id: int | None
    domain: str
    auth: str
    name: str = ""
    price: int = 0
    quota_gb: int = 0
    ip_limit: int = 0
    account_cap: int = 0
    accounts_created: int = 0
    isp: str = ""
    location: str = ""
    created_at: str = ""

    @property
    def is_full(self) -> bool:
        return self.account_cap > 0 and self.accounts_created >= self.account_cap

    def public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "name": self.name,
            "price": self.price,
            "quota_gb": self.quota_gb,
            "ip_limit": self.ip_limit,
            "account_cap": self.account_cap,
            "accounts_created": self.accounts_created,
            "isp": self.isp,
            "location": self.location,
            "created_at": self.created_at,
        }


@dataclass
class AccountRecord:
    username: str
    protocol: str
    server_id: int
    server_host: str
    expired_at: str
    owner_id: str = ""
    status: str = "active"
    created_at: str = ""
    raw_response: str = ""
    warned_3d: bool = False
    warned_1d: bool = False
    expired_notified: bool = False
    id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "protocol": self.protocol,
            "server_id": self.server_id,
            "server_host": self.server_host,
            "owner_id": self.owner_id,
            "status": self.status,
            "created_at": self.created_at,
            "expired_at": self.expired_at,
            "warned_3d": self.warned_3d,
            "warned_1d": self.warned_1d,
            "expired_notified": self.expired_notified,
        }


@dataclass(frozen=True)
class RawOutput:
    stdout: str
    stderr: str = ""
    exit_status: int | None = 0


@dataclass
class ProvisioningResult:
    status: ResultStatus
    message: str = ""
    reason: ErrorReason = ErrorReason.NONE
    reason_text: str = ""
    fields: dict[str, str] = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    def get(self, key: str, default: str = "") -> str:
        return self.fields.get(key, default)


@dataclass
class AccountRequest:
    username: str
    days: int = 0
    quota_gb: int = 0
    ip_limit: int = 0
    password: str = ""
    price: int = 0
    owner_id: str = ""


@dataclass
class ProvisioningOutcome:
    verb: Verb
    protocol: Protocol
    username: str
    state: OperationState
    message: str
    category: FailureCategory = FailureCategory.NONE
    result: ProvisioningResult | None = None
    expires_at: str = ""
    old_expires_at: str = ""
    credential: str = ""
    links: dict[str, str] = field(default_factory=dict)
    constituents: list["ProvisioningOutcome"] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is OperationState.SUCCEEDED

    @property
    def soft(self) -> bool:
        """Succeeded with a warning, e.g. deleting a user the host no longer has."""
        return self.ok and self.category is not FailureCategory.NONE

    @property
    def actionable(self) -> bool:
        return not self.ok and self.category in ACTIONABLE_CATEGORIES

    @property
    def refund(self) -> bool:
        return not self.ok and self.category not in NO_REFUND_CATEGORIES

    def as_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "verb": self.verb.value,
            "protocol": self.protocol.value,
            "username": self.username,
            "state": self.state.value,
            "category": self.category.value,
            "actionable": self.actionable,
            "refund": self.refund,
            "soft": self.soft,
        }
        if self.expires_at:
            data["expires_at"] = self.expires_at
        if self.old_expires_at:
            data["old_expires_at"] = self.old_expires_at
        if self.credential:
            data["credential"] = self.credential
        if self.links:
            data["links"] = dict(self.links)
        if self.constituents:
            data["constituents"] = [
                {"protocol": c.protocol.value, "state": c.state.value, "category": c.category.value}
                for c in self.constituents
            ]
        return data
