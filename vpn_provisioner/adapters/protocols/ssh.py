from __future__ import annotations

from ...models import (
    AccountRequest,
    FailureCategory,
    OperationState,
    Protocol,
    ProvisioningOutcome,
    ProvisioningResult,
    ServerTarget,
)
from ..scripts import ssh as ssh_scripts
from . import render
from .base import Operation, ProtocolAdapter


class SshAdapter(ProtocolAdapter):
    """Password-authenticated tunnel accounts (system users on the host)."""

    protocol = Protocol.SSH

    def validate_create(self, op: Operation, request: AccountRequest) -> ProvisioningOutcome | None:
        password = request.password or ""
        # chpasswd takes "user:password" lines.
        if not password.strip() or ":" in password or any(ch.isspace() for ch in password):
            return op.outcome(
                OperationState.FAILED,
                "❌ Password tidak valid. Wajib diisi tanpa spasi atau titik dua.",
                FailureCategory.VALIDATION,
            )
        return None

    def create_script(self, server: ServerTarget, request: AccountRequest, exp_date: str, credential: str) -> str:
        text = render.ssh_account_text(request.username, request.password, server.domain, exp_date, request.ip_limit)
        return ssh_scripts.create(request.username, request.password, exp_date, request.ip_limit, web_text=text)

    def created_outcome(self, op, server, request, exp_date, credential, result: ProvisioningResult):
        text = render.ssh_account_text(request.username, request.password, server.domain, exp_date, request.ip_limit)
        message = render.created(
            self.protocol.value,
            text,
            server.domain,
            ssh_scripts.web_file_name(request.username),
            request.days,
            request.price,
            self.settings.store_name,
        )
        return op.outcome(
            OperationState.SUCCEEDED,
            message,
            result=result,
            expires_at=exp_date,
            credential=request.password,
        )

    def renew_script(self, request: AccountRequest) -> str:
        return ssh_scripts.renew(request.username, request.days, request.ip_limit)

    def delete_script(self, username: str) -> str:
        return ssh_scripts.delete(username)

    def trial_script(self, server: ServerTarget, username: str, credential: str) -> str:
        minutes = self.settings.trial_minutes
        text = render.ssh_account_text(username, username, server.domain, f"{minutes} menit", 1)
        return ssh_scripts.trial(username, minutes, web_text=text)

    def trial_outcome(self, op, server, credential, result: ProvisioningResult):
        username = result.get("user") or op.username
        minutes = self.settings.trial_minutes
        text = render.ssh_account_text(username, username, server.domain, result.get("expiration") or "-", 1)
        message = render.trial(self.protocol.value, text, minutes, result.get("expiration"), self.settings.store_name)
        return op.outcome(OperationState.SUCCEEDED, message, result=result, credential=username)
