from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from ...errors import ParseError, ProvisioningError, RemoteScriptError, SessionTimeoutError, ValidationError
from ...models import (
    AccountRequest,
    ErrorReason,
    FailureCategory,
    OperationState,
    Protocol,
    ProvisioningOutcome,
    ProvisioningResult,
    ServerTarget,
    Verb,
)
from ...utils.validators import is_valid_username
from .. import output_parser
from ..scripts.common import renewal_expiry, trial_username
from . import render

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    OperationState.REQUESTED: {OperationState.CONNECTING, OperationState.FAILED},
    OperationState.CONNECTING: {OperationState.EXECUTING, OperationState.FAILED, OperationState.TIMED_OUT},
    OperationState.EXECUTING: {OperationState.PARSING, OperationState.FAILED, OperationState.TIMED_OUT},
    OperationState.PARSING: {OperationState.SUCCEEDED, OperationState.FAILED},
}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def check_request(username: str, days: int | None = None) -> None:
    """Input checks that must pass before any session is opened."""
    if not is_valid_username(username):
        raise ValidationError(render.MSG_INVALID_USERNAME)
    if days is not None and int(days) < 1:
        raise ValidationError("❌ Masa aktif minimal 1 hari.")


def validate_request(op: "Operation", username: str, days: int | None = None) -> ProvisioningOutcome | None:
    try:
        check_request(username, days)
    except ValidationError as exc:
        return op.outcome(OperationState.FAILED, exc.message, exc.category)
    return None


class Operation:
    """Lifecycle of a single verb against a single host."""

    def __init__(self, verb: Verb, protocol: Protocol, username: str, host: str) -> None:
        self.verb = verb
        self.protocol = protocol
        self.username = username
        self.host = host
        self.state = OperationState.REQUESTED

    def advance(self, new_state: OperationState) -> bool:
        if self.state.terminal:
            return False
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid transition {self.state.value} -> {new_state.value}")
        logger.debug(
            "%s %s %s@%s: %s -> %s",
            self.verb.value,
            self.protocol.value,
            self.username,
            self.host,
            self.state.value,
            new_state.value,
        )
        self.state = new_state
        return True

    def outcome(
        self,
        state: OperationState,
        message: str,
        category: FailureCategory = FailureCategory.NONE,
        result: ProvisioningResult | None = None,
        **extra,
    ) -> ProvisioningOutcome:
        self.advance(state)
        return ProvisioningOutcome(
            verb=self.verb,
            protocol=self.protocol,
            username=self.username,
            state=self.state,
            message=message,
            category=category,
            result=result,
            **extra,
        )


class ProtocolAdapter:
    """create/renew/delete/trial for one tunnel family.

    Subclasses only build scripts and success messages; session handling,
    parsing and failure mapping live here so every variant reports the same
    way.
    """

    protocol: Protocol

    def __init__(self, shell, settings, today: Callable[[], date] | None = None) -> None:
        self.shell = shell
        self.settings = settings
        self._today = today or utc_today

    # -- hooks -----------------------------------------------------------

    def create_script(self, server: ServerTarget, request: AccountRequest, exp_date: str, credential: str) -> str:
        raise NotImplementedError

    def created_outcome(
        self,
        op: Operation,
        server: ServerTarget,
        request: AccountRequest,
        exp_date: str,
        credential: str,
        result: ProvisioningResult,
    ) -> ProvisioningOutcome:
        raise NotImplementedError

    def renew_script(self, request: AccountRequest) -> str:
        raise NotImplementedError

    def delete_script(self, username: str) -> str:
        raise NotImplementedError

    def trial_script(self, server: ServerTarget, username: str, credential: str) -> str:
        raise NotImplementedError

    def trial_outcome(
        self, op: Operation, server: ServerTarget, credential: str, result: ProvisioningResult
    ) -> ProvisioningOutcome:
        raise NotImplementedError

    def new_credential(self) -> str:
        return ""

    # -- verbs -----------------------------------------------------------

    async def create(
        self,
        server: ServerTarget,
        request: AccountRequest,
        credential: str = "",
        timeout: float | None = None,
    ) -> ProvisioningOutcome:
        op = Operation(Verb.CREATE, self.protocol, request.username, server.domain)
        rejected = self._validate(op, request.username, request.days)
        if rejected is not None:
            return rejected
        rejected = self.validate_create(op, request)
        if rejected is not None:
            return rejected

        exp_date = (self._today() + timedelta(days=request.days)).isoformat()
        credential = credential or self.new_credential()
        script = self.create_script(server, request, exp_date, credential)
        result = await self._execute(op, server, script, timeout or self.settings.timeout_create)
        if isinstance(result, ProvisioningOutcome):
            return result
        if not result.ok:
            return self._remote_failure(op, result)
        outcome = self.created_outcome(op, server, request, result.get("exp_date") or exp_date, credential, result)
        outcome.message = output_parser.embed_expiry_tag(outcome.message, outcome.expires_at)
        return outcome

    async def renew(
        self, server: ServerTarget, request: AccountRequest, timeout: float | None = None
    ) -> ProvisioningOutcome:
        op = Operation(Verb.RENEW, self.protocol, request.username, server.domain)
        rejected = self._validate(op, request.username, request.days)
        if rejected is not None:
            return rejected

        script = self.renew_script(request)
        result = await self._execute(op, server, script, timeout or self.settings.timeout_renew)
        if isinstance(result, ProvisioningOutcome):
            return result
        if not result.ok:
            return self._remote_failure(op, result)

        old_expiry = result.get("old_exp")
        new_expiry = result.get("new_exp")
        if not new_expiry:
            new_expiry = renewal_expiry(old_expiry, request.days, self._today()).isoformat()
            logger.warning("No new_exp reported for %s, computed %s locally", request.username, new_expiry)
        message = render.renewed(
            self.protocol.value,
            request.username,
            server.domain,
            old_expiry,
            new_expiry,
            request.days,
            None if self.protocol is Protocol.SSH else request.quota_gb,
            request.ip_limit,
            self.settings.store_name,
        )
        return op.outcome(
            OperationState.SUCCEEDED,
            output_parser.embed_expiry_tag(message, new_expiry),
            result=result,
            expires_at=new_expiry,
            old_expires_at=old_expiry,
            credential=result.get("uuid"),
        )

    async def delete(self, server: ServerTarget, username: str, timeout: float | None = None) -> ProvisioningOutcome:
        op = Operation(Verb.DELETE, self.protocol, username, server.domain)
        rejected = self._validate(op, username)
        if rejected is not None:
            return rejected

        result = await self._execute(op, server, self.delete_script(username), timeout or self.settings.timeout_delete)
        if isinstance(result, ProvisioningOutcome):
            return result
        if not result.ok:
            return self._remote_failure(op, result)
        return op.outcome(
            OperationState.SUCCEEDED,
            render.deleted(self.protocol.value, username, server.domain),
            result=result,
        )

    async def trial(
        self,
        server: ServerTarget,
        username: str = "",
        credential: str = "",
        timeout: float | None = None,
    ) -> ProvisioningOutcome:
        username = username or trial_username()
        op = Operation(Verb.TRIAL, self.protocol, username, server.domain)
        rejected = self._validate(op, username)
        if rejected is not None:
            return rejected

        credential = credential or self.new_credential()
        script = self.trial_script(server, username, credential)
        result = await self._execute(op, server, script, timeout or self.settings.timeout_trial)
        if isinstance(result, ProvisioningOutcome):
            return result
        if not result.ok:
            return self._remote_failure(op, result)
        return self.trial_outcome(op, server, credential, result)

    # -- shared plumbing -------------------------------------------------

    def validate_create(self, op: Operation, request: AccountRequest) -> ProvisioningOutcome | None:
        return None

    def _validate(self, op: Operation, username: str, days: int | None = None) -> ProvisioningOutcome | None:
        return validate_request(op, username, days)

    async def _execute(
        self, op: Operation, server: ServerTarget, script: str, timeout: float
    ) -> ProvisioningResult | ProvisioningOutcome:
        op.advance(OperationState.CONNECTING)
        try:
            raw = await self.shell.execute(
                server, script, timeout, on_ready=lambda: op.advance(OperationState.EXECUTING)
            )
        except SessionTimeoutError as exc:
            return op.outcome(OperationState.TIMED_OUT, render.failure(exc.message), exc.category)
        except ProvisioningError as exc:
            logger.warning("%s %s on %s failed: %s", op.verb.value, op.protocol.value, server.domain, exc.message)
            return op.outcome(OperationState.FAILED, render.failure(exc.message), exc.category)

        if op.state is OperationState.CONNECTING:
            op.advance(OperationState.EXECUTING)
        op.advance(OperationState.PARSING)
        try:
            result = output_parser.parse(raw)
        except ParseError as exc:
            failure: ProvisioningError = exc
            if raw.exit_status not in (0, None):
                failure = RemoteScriptError(
                    f"Script gagal dengan exit status {raw.exit_status}.", detail=raw.stderr or exc.detail
                )
            logger.error("Unparseable output from %s (exit %s): %s", server.domain, raw.exit_status, exc.detail)
            return op.outcome(OperationState.FAILED, render.failure(failure.message), failure.category)

        if raw.exit_status not in (0, None) and result.ok:
            logger.warning("%s reported SUCCESS with exit status %s", server.domain, raw.exit_status)
        return result

    def _remote_failure(self, op: Operation, result: ProvisioningResult) -> ProvisioningOutcome:
        if result.reason is ErrorReason.ALREADY_EXISTS and op.verb in {Verb.CREATE, Verb.TRIAL}:
            return op.outcome(
                OperationState.FAILED, render.MSG_ALREADY_EXISTS, FailureCategory.ALREADY_EXISTS, result
            )
        if result.reason is ErrorReason.NOT_FOUND and op.verb is Verb.DELETE:
            return op.outcome(
                OperationState.SUCCEEDED, render.MSG_DELETE_NOT_FOUND, FailureCategory.NOT_FOUND, result
            )
        if result.reason is ErrorReason.NOT_FOUND:
            return op.outcome(OperationState.FAILED, render.MSG_RENEW_NOT_FOUND, FailureCategory.NOT_FOUND, result)
        return op.outcome(
            OperationState.FAILED, render.remote_error(result.reason_text), FailureCategory.REMOTE_SCRIPT, result
        )
