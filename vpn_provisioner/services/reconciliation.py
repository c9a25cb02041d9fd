from __future__ import annotations

import logging
from datetime import date
from typing import Callable

from ..adapters import output_parser
from ..adapters.database import Database
from ..adapters.protocols.base import utc_today
from ..adapters.scripts.common import renewal_expiry
from ..models import BUNDLE_MEMBERS, AccountRecord, Protocol, ProvisioningOutcome, ServerTarget, Verb
from ..utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


def index_protocols(protocol: str) -> list[str]:
    """Protocol families an account occupies in the active-account index."""
    if protocol == Protocol.BUNDLE.value:
        return [p.value for p in BUNDLE_MEMBERS]
    return [protocol]


def resolve_expiry(outcome: ProvisioningOutcome, days: int = 0, today: date | None = None) -> str:
    """Expiry to persist: embedded tag, then reported date, then the local renewal rule."""
    tag = output_parser.extract_expiry_tag(outcome.message)
    if tag:
        return tag
    if outcome.expires_at:
        return outcome.expires_at
    if outcome.result is not None:
        reported = outcome.result.get("new_exp") or outcome.result.get("exp_date")
        if reported:
            return reported
    return renewal_expiry(outcome.old_expires_at, days, today or utc_today()).isoformat()


class Reconciler:
    """Applies successful outcomes to the local store.

    Writes for the same (username, protocol, server) are serialized; failed
    and timed-out outcomes never touch the store.
    """

    def __init__(self, db: Database, locks: KeyedLocks | None = None, today: Callable[[], date] | None = None):
        self.db = db
        self._locks = locks or KeyedLocks()
        self._today = today or utc_today

    async def apply(
        self, server: ServerTarget, outcome: ProvisioningOutcome, owner_id: str = "", days: int = 0
    ) -> AccountRecord | None:
        if not outcome.ok or outcome.verb is Verb.TRIAL:
            return None

        key = (outcome.username, outcome.protocol.value, server.id)
        async with self._locks.hold(key):
            if outcome.verb is Verb.DELETE:
                self.forget(outcome.username, outcome.protocol.value, server.id)
                return None
            record = self._upsert(server, outcome, owner_id, days)
            if outcome.verb is Verb.CREATE:
                self.db.increment_accounts_created(server.id)
            return record

    def _upsert(self, server: ServerTarget, outcome: ProvisioningOutcome, owner_id: str, days: int) -> AccountRecord:
        proto = outcome.protocol.value
        expired_at = resolve_expiry(outcome, days, self._today())
        raw = output_parser.strip_expiry_tag(outcome.message)

        existing = self.db.get_account(outcome.username, proto, server.id)
        if existing is None:
            record = AccountRecord(
                username=outcome.username,
                protocol=proto,
                server_id=server.id,
                server_host=server.domain,
                expired_at=expired_at,
                owner_id=owner_id,
                raw_response=raw,
            )
            record.id = self.db.insert_account(record)
            logger.info("Recorded %s %s on %s until %s", proto, outcome.username, server.domain, expired_at)
        else:
            self.db.rearm_account(existing.id, expired_at, raw)
            logger.info(
                "Re-armed %s %s on %s: %s -> %s", proto, outcome.username, server.domain, existing.expired_at, expired_at
            )
        for family in index_protocols(proto):
            self.db.upsert_active(outcome.username, family)
        return self.db.get_account(outcome.username, proto, server.id)

    def forget(self, username: str, protocol: str, server_id: int) -> None:
        removed = self.db.delete_account(username, protocol, server_id)
        for family in index_protocols(protocol):
            self.db.remove_active(username, family)
        logger.info("Removed %s %s (server %s), record existed: %s", protocol, username, server_id, removed)

    async def discard(self, record: AccountRecord) -> None:
        async with self._locks.hold((record.username, record.protocol, record.server_id)):
            self.forget(record.username, record.protocol, record.server_id)

    async def set_flag(self, record: AccountRecord, flag: str) -> None:
        async with self._locks.hold((record.username, record.protocol, record.server_id)):
            self.db.set_flag(record.id, flag)

    async def mark_expired(self, record: AccountRecord) -> None:
        async with self._locks.hold((record.username, record.protocol, record.server_id)):
            self.db.mark_expired(record.id)
