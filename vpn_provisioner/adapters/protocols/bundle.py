from __future__ import annotations

import logging
import uuid

from ...models import (
    BUNDLE_MEMBERS,
    AccountRequest,
    FailureCategory,
    OperationState,
    Protocol,
    ProvisioningOutcome,
    ServerTarget,
    Verb,
)
from .. import output_parser
from ..scripts.common import trial_username
from . import render
from .base import Operation, validate_request
from .xray import XrayAdapter

logger = logging.getLogger(__name__)


class BundleAdapter:
    """3-in-1 account: the same verb over VMess, VLESS and Trojan under one UUID.

    ``policy="any"`` succeeds when at least one member succeeds. ``policy="all"``
    fails unless every member succeeds; on create the members that did
    succeed are deleted again.
    """

    protocol = Protocol.BUNDLE

    def __init__(self, members: dict[Protocol, XrayAdapter], settings, policy: str = "any") -> None:
        missing = [p.value for p in BUNDLE_MEMBERS if p not in members]
        if missing:
            raise ValueError(f"bundle members missing: {', '.join(missing)}")
        self.members = members
        self.settings = settings
        self.policy = policy

    def _validate(self, op: Operation, username: str, days: int | None = None) -> ProvisioningOutcome | None:
        return validate_request(op, username, days)

    def _accept(self, outcomes: list[ProvisioningOutcome]) -> bool:
        succeeded = [o for o in outcomes if o.ok]
        if self.policy == "all":
            return len(succeeded) == len(outcomes)
        return bool(succeeded)

    def _combine(
        self,
        op: Operation,
        outcomes: list[ProvisioningOutcome],
        success_message: str,
        **extra,
    ) -> ProvisioningOutcome:
        op.advance(OperationState.CONNECTING)
        op.advance(OperationState.EXECUTING)
        failed = [o for o in outcomes if not o.ok]
        status = render.bundle_status_lines([(o.protocol.value, o.ok, o.message) for o in outcomes])
        if self._accept(outcomes):
            op.advance(OperationState.PARSING)
            if failed:
                category = failed[0].category
            else:
                category = next((o.category for o in outcomes if o.soft), FailureCategory.NONE)
            message = "\n".join([success_message, render.DIVIDER, *status])
            outcome = op.outcome(OperationState.SUCCEEDED, message, category, **extra)
        else:
            if failed and all(o.category is FailureCategory.ALREADY_EXISTS for o in failed):
                head = render.MSG_ALREADY_EXISTS
            else:
                head = f"❌ Gagal memproses akun {render.label(self.protocol.value)}."
            category = failed[0].category if failed else FailureCategory.GENERIC
            if category is FailureCategory.TIMEOUT:
                state = OperationState.TIMED_OUT
            else:
                op.advance(OperationState.PARSING)
                state = OperationState.FAILED
            outcome = op.outcome(state, "\n".join([head, *status]), category)
        outcome.constituents = outcomes
        return outcome

    async def create(
        self, server: ServerTarget, request: AccountRequest, credential: str = "", timeout: float | None = None
    ) -> ProvisioningOutcome:
        op = Operation(Verb.CREATE, self.protocol, request.username, server.domain)
        rejected = self._validate(op, request.username, request.days)
        if rejected is not None:
            return rejected

        credential = credential or str(uuid.uuid4())
        budget = timeout or self.settings.timeout_bundle
        outcomes = []
        for proto in BUNDLE_MEMBERS:
            outcomes.append(await self.members[proto].create(server, request, credential=credential, timeout=budget))

        if self.policy == "all" and not all(o.ok for o in outcomes):
            await self._rollback(server, request.username, [o for o in outcomes if o.ok])

        expires_at = next((o.expires_at for o in outcomes if o.ok), "")
        links = {f"{o.protocol.value}_{net}": link for o in outcomes if o.ok for net, link in o.links.items()}
        lines = [
            f"✅ *Akun {render.label(self.protocol.value)} berhasil dibuat!*",
            render.DIVIDER,
            f"Username    : {request.username}",
            f"UUID        : {credential}",
            f"Domain      : {server.domain}",
            f"Quota       : {render.fmt_quota(request.quota_gb)}",
            f"IP Limit    : {request.ip_limit}",
            f"Valid Until : {expires_at or '-'}",
            f"Masa Aktif  : {request.days} hari",
        ]
        if request.price:
            lines.append(f"Harga       : {render.fmt_price(request.price)}")
        for name, link in links.items():
            lines.append(f"{name}: `{link}`")
        lines.append(f"Terima kasih telah menggunakan layanan {self.settings.store_name}.")
        outcome = self._combine(
            op, outcomes, "\n".join(lines), expires_at=expires_at, credential=credential, links=links
        )
        if outcome.ok:
            outcome.message = output_parser.embed_expiry_tag(outcome.message, expires_at)
        return outcome

    async def _rollback(self, server: ServerTarget, username: str, succeeded: list[ProvisioningOutcome]) -> None:
        for done in succeeded:
            logger.warning("Rolling back %s %s on %s", done.protocol.value, username, server.domain)
            result = await self.members[done.protocol].delete(server, username)
            if not result.ok:
                logger.error("Rollback of %s %s failed: %s", done.protocol.value, username, result.message)

    async def renew(
        self, server: ServerTarget, request: AccountRequest, timeout: float | None = None
    ) -> ProvisioningOutcome:
        op = Operation(Verb.RENEW, self.protocol, request.username, server.domain)
        rejected = self._validate(op, request.username, request.days)
        if rejected is not None:
            return rejected

        budget = timeout or self.settings.timeout_bundle
        outcomes = [await self.members[p].renew(server, request, timeout=budget) for p in BUNDLE_MEMBERS]
        done = [o for o in outcomes if o.ok]
        new_expiry = max((o.expires_at for o in done), default="")
        old_expiry = next((o.old_expires_at for o in done if o.old_expires_at), "")
        message = render.renewed(
            self.protocol.value,
            request.username,
            server.domain,
            old_expiry,
            new_expiry,
            request.days,
            request.quota_gb,
            request.ip_limit,
            self.settings.store_name,
        )
        outcome = self._combine(op, outcomes, message, expires_at=new_expiry, old_expires_at=old_expiry)
        if outcome.ok:
            outcome.message = output_parser.embed_expiry_tag(outcome.message, new_expiry)
        return outcome

    async def delete(self, server: ServerTarget, username: str, timeout: float | None = None) -> ProvisioningOutcome:
        op = Operation(Verb.DELETE, self.protocol, username, server.domain)
        rejected = self._validate(op, username)
        if rejected is not None:
            return rejected

        budget = timeout or self.settings.timeout_bundle
        outcomes = [await self.members[p].delete(server, username, timeout=budget) for p in BUNDLE_MEMBERS]
        if all(o.category is FailureCategory.NOT_FOUND for o in outcomes):
            message = render.MSG_DELETE_NOT_FOUND
        else:
            message = render.deleted(self.protocol.value, username, server.domain)
        return self._combine(op, outcomes, message)

    async def trial(
        self, server: ServerTarget, username: str = "", credential: str = "", timeout: float | None = None
    ) -> ProvisioningOutcome:
        username = username or trial_username()
        op = Operation(Verb.TRIAL, self.protocol, username, server.domain)
        rejected = self._validate(op, username)
        if rejected is not None:
            return rejected

        credential = credential or str(uuid.uuid4())
        budget = timeout or self.settings.timeout_bundle
        outcomes = [
            await self.members[p].trial(server, username=username, credential=credential, timeout=budget)
            for p in BUNDLE_MEMBERS
        ]
        links = {f"{o.protocol.value}_{net}": link for o in outcomes if o.ok for net, link in o.links.items()}
        lines = [
            f"✅ *Trial {render.label(self.protocol.value)} berhasil dibuat!*",
            render.DIVIDER,
            f"Username    : {username}",
            f"UUID        : {credential}",
            f"Domain      : {server.domain}",
            f"Durasi      : {self.settings.trial_minutes} menit",
        ]
        lines.extend(f"{name}: `{link}`" for name, link in links.items())
        return self._combine(op, outcomes, "\n".join(lines), credential=credential, links=links)
