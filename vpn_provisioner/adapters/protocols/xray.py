from __future__ import annotations

import secrets
import uuid

from ...models import AccountRequest, OperationState, Protocol, ProvisioningResult, ServerTarget
from ..scripts import xray as xray_scripts
from ..scripts.links import build_links
from . import render
from .base import ProtocolAdapter


def generate_credential(proto: str) -> str:
    if proto in {"trojan", "shadowsocks"}:
        return secrets.token_hex(16)
    return str(uuid.uuid4())


class XrayAdapter(ProtocolAdapter):
    """UUID/password keyed Xray variants sharing one config layout per protocol."""

    def __init__(self, protocol: Protocol, shell, settings, today=None) -> None:
        super().__init__(shell, settings, today)
        if protocol.value not in xray_scripts.XRAY_PROTOCOLS:
            raise ValueError(f"not an xray protocol: {protocol.value}")
        self.protocol = protocol

    @property
    def proto(self) -> str:
        return self.protocol.value

    def new_credential(self) -> str:
        return generate_credential(self.proto)

    def _account_text(
        self, server: ServerTarget, username: str, credential: str, expires: str, quota_gb: int, ip_limit: int
    ) -> tuple[str, dict[str, str]]:
        links = build_links(self.proto, username, credential, server.domain)
        text = render.xray_account_text(
            self.proto, username, credential, server.domain, expires, quota_gb, ip_limit, links
        )
        return text, links

    def create_script(self, server: ServerTarget, request: AccountRequest, exp_date: str, credential: str) -> str:
        text, _ = self._account_text(server, request.username, credential, exp_date, request.quota_gb, request.ip_limit)
        return xray_scripts.create(
            self.proto, request.username, credential, exp_date, request.quota_gb, request.ip_limit, web_text=text
        )

    def created_outcome(self, op, server, request, exp_date, credential, result: ProvisioningResult):
        credential = result.get("uuid") or credential
        text, links = self._account_text(
            server, request.username, credential, exp_date, request.quota_gb, request.ip_limit
        )
        message = render.created(
            self.proto,
            text,
            server.domain,
            xray_scripts.web_file_name(self.proto, request.username),
            request.days,
            request.price,
            self.settings.store_name,
        )
        return op.outcome(
            OperationState.SUCCEEDED,
            message,
            result=result,
            expires_at=exp_date,
            credential=credential,
            links=links,
        )

    def renew_script(self, request: AccountRequest) -> str:
        return xray_scripts.renew(self.proto, request.username, request.days, request.quota_gb, request.ip_limit)

    def delete_script(self, username: str) -> str:
        return xray_scripts.delete(self.proto, username)

    def trial_script(self, server: ServerTarget, username: str, credential: str) -> str:
        minutes = self.settings.trial_minutes
        text, _ = self._account_text(server, username, credential, f"{minutes} menit", 0, 1)
        return xray_scripts.trial(self.proto, username, credential, minutes, web_text=text)

    def trial_outcome(self, op, server, credential, result: ProvisioningResult):
        minutes = self.settings.trial_minutes
        expiration = result.get("expiration")
        text, links = self._account_text(server, op.username, credential, expiration or "-", 0, 1)
        message = render.trial(self.proto, text, minutes, expiration, self.settings.store_name)
        return op.outcome(OperationState.SUCCEEDED, message, result=result, credential=credential, links=links)
