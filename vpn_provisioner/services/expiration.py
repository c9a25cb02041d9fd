from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable

from ..adapters.database import Database
from ..adapters.protocols.base import utc_today
from ..adapters.protocols.render import label
from ..models import AccountRecord
from .notifier import Notifier
from .provisioning import ProvisioningService
from .reconciliation import Reconciler

logger = logging.getLogger(__name__)

SUMMARY_DETAIL_LIMIT = 10
WARNING_FLAGS = {3: "warned_3d", 1: "warned_1d"}
SWEEPS = ("warn_3d", "warn_1d", "notify_expired", "purge")


def days_until(expired_at: str, today: date) -> int | None:
    try:
        expiry = datetime.strptime(expired_at[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None
    return (expiry - today).days


def _account_lines(record: AccountRecord) -> str:
    return "\n".join(
        [
            f"👤 *Username:* `{record.username}`",
            f"🔧 *Protocol:* {label(record.protocol)}",
            f"🖥️ *Server:* {record.server_host}",
            f"⏰ *Kadaluarsa:* {record.expired_at}",
        ]
    )


def warning_message(record: AccountRecord, days_left: int) -> str:
    if days_left == 1:
        return (
            "🚨 *PERHATIAN: Masa Aktif Hampir Habis!*\n\n"
            "Akun VPN Anda akan kadaluarsa dalam 24 jam:\n\n"
            f"{_account_lines(record)}\n"
            "⌛ *Sisa waktu:* *1 hari*\n\n"
            "⚠️ Perpanjang SEKARANG untuk menghindari penonaktifan akun!"
        )
    return (
        "⚠️ *Peringatan Masa Aktif Akun*\n\n"
        "Akun VPN Anda akan segera habis masa aktifnya:\n\n"
        f"{_account_lines(record)}\n"
        f"⌛ *Sisa waktu:* *{days_left} hari*\n\n"
        "💡 Segera perpanjang akun Anda untuk menghindari gangguan layanan."
    )


def expired_message(record: AccountRecord, grace_days: int) -> str:
    return (
        "❌ *Akun Telah Kadaluarsa*\n\n"
        "Akun VPN Anda telah habis masa aktifnya:\n\n"
        f"{_account_lines(record)}\n\n"
        f"🗑️ Akun akan *OTOMATIS TERHAPUS* dalam *{grace_days} hari*.\n\n"
        "💡 Perpanjang sekarang jika Anda masih memerlukan akun ini."
    )


def deletion_summary(records: list[AccountRecord], grace_days: int, now: datetime) -> str:
    lines = [
        "🗑️ *Laporan Penghapusan Otomatis*",
        "",
        f"{len(records)} akun yang sudah expired selama {grace_days}+ hari telah dihapus.",
        "",
        f"🕐 *Waktu:* {now.strftime('%Y-%m-%d %H:%M')} UTC",
        "",
    ]
    if len(records) <= SUMMARY_DETAIL_LIMIT:
        lines.append("*Detail akun yang dihapus:*")
        for idx, rec in enumerate(records, start=1):
            owner = rec.owner_id or "-"
            lines.append(f"{idx}. `{rec.username}` ({label(rec.protocol)}) - Owner: {owner}")
    else:
        lines.append(f"_Terlalu banyak untuk ditampilkan detail ({len(records)} akun)_")
    return "\n".join(lines)


@dataclass
class SweepReport:
    name: str
    candidates: int = 0
    done: int = 0
    failed: int = 0
    usernames: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "sweep": self.name,
            "candidates": self.candidates,
            "done": self.done,
            "failed": self.failed,
            "usernames": list(self.usernames),
        }


class ExpirationScanner:
    """Warning, expiry notice and grace-period deletion sweeps.

    Each sweep is idempotent for a given day: the notification flags on the
    account record guard against repeats, and purged records are gone. A
    failed notification leaves its flag unset so the next run retries it.
    """

    def __init__(
        self,
        db: Database,
        reconciler: Reconciler,
        provisioning: ProvisioningService,
        notifier: Notifier,
        grace_days: int = 3,
        admin_ids: Iterable[str] = (),
        today: Callable[[], date] | None = None,
    ) -> None:
        self.db = db
        self.reconciler = reconciler
        self.provisioning = provisioning
        self.notifier = notifier
        self.grace_days = grace_days
        self.admin_ids = sorted(admin_ids)
        self._today = today or utc_today

    async def _notify(self, record: AccountRecord, text: str) -> bool:
        if not record.owner_id:
            logger.info("Account %s has no owner, skipping notification", record.username)
            return True
        try:
            await self.notifier.send(record.owner_id, text)
        except Exception as exc:
            logger.error("Failed to notify %s about %s: %s", record.owner_id, record.username, exc)
            return False
        return True

    async def warn(self, days_left: int) -> SweepReport:
        flag = WARNING_FLAGS[days_left]
        report = SweepReport(f"warn_{days_left}d")
        target_day = (self._today() + timedelta(days=days_left)).isoformat()
        records = self.db.accounts_expiring_on(target_day, flag)
        report.candidates = len(records)
        for record in records:
            if await self._notify(record, warning_message(record, days_left)):
                await self.reconciler.set_flag(record, flag)
                report.done += 1
                report.usernames.append(record.username)
            else:
                report.failed += 1
        logger.info("Expiration warnings (%sd): %s/%s sent", days_left, report.done, report.candidates)
        return report

    async def warn_3d(self) -> SweepReport:
        return await self.warn(3)

    async def warn_1d(self) -> SweepReport:
        return await self.warn(1)

    async def notify_expired(self) -> SweepReport:
        """Accounts that expired today or yesterday: tell the owner once and mark them expired."""
        today = self._today()
        report = SweepReport("notify_expired")
        records = self.db.accounts_recently_expired((today - timedelta(days=1)).isoformat(), today.isoformat())
        report.candidates = len(records)
        for record in records:
            if await self._notify(record, expired_message(record, self.grace_days)):
                await self.reconciler.mark_expired(record)
                report.done += 1
                report.usernames.append(record.username)
            else:
                report.failed += 1
        logger.info("Expiration notices: %s/%s sent", report.done, report.candidates)
        return report

    async def purge(self) -> SweepReport:
        cutoff = (self._today() - timedelta(days=self.grace_days)).isoformat()
        report = SweepReport("purge")
        records = self.db.accounts_past_grace(cutoff)
        report.candidates = len(records)
        for record in records:
            if not await self._delete_remote(record):
                report.failed += 1
            # Local state is dropped whatever the host said.
            await self.reconciler.discard(record)
            report.done += 1
            report.usernames.append(record.username)
        logger.info(
            "Grace purge: %s account(s) removed, %s remote delete(s) failed", report.done, report.failed
        )
        if report.done and self.admin_ids:
            await self._send_summary(records)
        return report

    async def _delete_remote(self, record: AccountRecord) -> bool:
        server = self.db.get_server(record.server_id)
        if server is None:
            logger.warning("Server %s for %s no longer exists, skipping remote delete", record.server_id, record.username)
            return False
        try:
            outcome = await self.provisioning.delete_for_expiry(record.protocol, server, record.username)
        except Exception as exc:
            logger.error("Remote delete of %s on %s raised: %s", record.username, server.domain, exc)
            return False
        if not outcome.ok:
            logger.warning("Remote delete of %s on %s failed: %s", record.username, server.domain, outcome.message)
        return outcome.ok

    async def _send_summary(self, records: list[AccountRecord]) -> None:
        text = deletion_summary(records, self.grace_days, datetime.now(timezone.utc))
        for admin_id in self.admin_ids:
            try:
                await self.notifier.send(admin_id, text)
            except Exception as exc:
                logger.error("Failed to send deletion summary to admin %s: %s", admin_id, exc)

    async def run(self, sweep: str) -> list[SweepReport]:
        if sweep == "all":
            return [await self.run_one(name) for name in SWEEPS]
        return [await self.run_one(sweep)]

    async def run_one(self, sweep: str) -> SweepReport:
        if sweep not in SWEEPS:
            raise ValueError(f"unknown sweep: {sweep}")
        return await getattr(self, sweep)()
