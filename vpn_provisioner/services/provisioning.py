from __future__ import annotations

import logging
import sqlite3
from contextlib import nullcontext
from typing import Mapping

from ..adapters.database import Database
from ..adapters.protocols import Adapter, render
from ..adapters.protocols.base import Operation
from ..models import (
    AccountRequest,
    FailureCategory,
    OperationState,
    Protocol,
    ProvisioningOutcome,
    ServerTarget,
    Verb,
)
from ..utils.locks import KeyedLocks
from .reconciliation import Reconciler

logger = logging.getLogger(__name__)


class ProvisioningService:
    """Server lookup, creation cap, per-server serialization, dispatch, reconciliation."""

    def __init__(
        self,
        db: Database,
        adapters: Mapping[Protocol, Adapter],
        reconciler: Reconciler,
        serialize_per_server: bool = True,
    ) -> None:
        self.db = db
        self.adapters = adapters
        self.reconciler = reconciler
        self.serialize_per_server = serialize_per_server
        self._server_locks = KeyedLocks()

    def _gate(self, server_id: int):
        if self.serialize_per_server:
            return self._server_locks.hold(server_id)
        return nullcontext()

    @staticmethod
    def _rejected(
        verb: Verb, protocol: Protocol, username: str, message: str, category: FailureCategory, host: str = "-"
    ) -> ProvisioningOutcome:
        return Operation(verb, protocol, username, host).outcome(OperationState.FAILED, message, category)

    async def run(self, protocol: Protocol, verb: Verb, server_id: int, request: AccountRequest) -> ProvisioningOutcome:
        adapter = self.adapters[protocol]
        async with self._gate(server_id):
            server = self.db.get_server(server_id)
            if server is None:
                return self._rejected(
                    verb, protocol, request.username, render.MSG_SERVER_NOT_FOUND, FailureCategory.SERVER_NOT_FOUND
                )
            if verb is Verb.CREATE and server.is_full:
                logger.info("Server %s is full (%s/%s)", server.domain, server.accounts_created, server.account_cap)
                return self._rejected(
                    verb, protocol, request.username, render.MSG_SERVER_FULL, FailureCategory.SERVER_FULL, server.domain
                )

            outcome = await self._dispatch(adapter, verb, server, request)
            logger.info(
                "%s %s %s on %s: %s (%s)",
                verb.value,
                protocol.value,
                outcome.username,
                server.domain,
                outcome.state.value,
                outcome.category.value,
            )
            try:
                await self.reconciler.apply(server, outcome, owner_id=request.owner_id, days=request.days)
            except sqlite3.Error:
                # Remote state already changed; report the remote result and leave a trail.
                logger.exception("Reconciliation failed for %s %s on %s", protocol.value, outcome.username, server.domain)
            return outcome

    @staticmethod
    async def _dispatch(
        adapter: Adapter, verb: Verb, server: ServerTarget, request: AccountRequest
    ) -> ProvisioningOutcome:
        if verb is Verb.CREATE:
            return await adapter.create(server, request)
        if verb is Verb.RENEW:
            return await adapter.renew(server, request)
        if verb is Verb.DELETE:
            return await adapter.delete(server, request.username)
        return await adapter.trial(server)

    async def delete_for_expiry(self, record_protocol: str, server: ServerTarget, username: str) -> ProvisioningOutcome:
        """Remote delete used by the grace sweep; reconciliation is the caller's job."""
        protocol = Protocol.parse(record_protocol)
        if protocol is None:
            raise ValueError(f"unknown protocol in account record: {record_protocol}")
        async with self._gate(server.id):
            return await self.adapters[protocol].delete(server, username)
