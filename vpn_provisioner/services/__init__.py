from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable

from ..adapters.database import Database
from ..adapters.protocols import build_adapters
from ..adapters.protocols.base import utc_today
from ..adapters.remote_shell import RemoteShell
from ..config import Settings, get_settings
from .expiration import ExpirationScanner
from .flows import FlowRegistry
from .notifier import Notifier, build_notifier
from .provisioning import ProvisioningService
from .reconciliation import Reconciler


@dataclass
class Services:
    settings: Settings
    db: Database
    provisioning: ProvisioningService
    reconciler: Reconciler
    scanner: ExpirationScanner
    flows: FlowRegistry
    notifier: Notifier
    today: Callable[[], date] = utc_today


def build_services(
    settings: Settings,
    shell=None,
    notifier: Notifier | None = None,
    today: Callable[[], date] | None = None,
) -> Services:
    today = today or utc_today
    db = Database(settings.database_path)
    shell = shell or RemoteShell.from_settings(settings)
    notifier = notifier or build_notifier(settings)
    reconciler = Reconciler(db, today=today)
    provisioning = ProvisioningService(
        db,
        build_adapters(shell, settings, today),
        reconciler,
        serialize_per_server=settings.serialize_per_server,
    )
    scanner = ExpirationScanner(
        db,
        reconciler,
        provisioning,
        notifier,
        grace_days=settings.grace_days,
        admin_ids=settings.admin_ids,
        today=today,
    )
    return Services(
        settings=settings,
        db=db,
        provisioning=provisioning,
        reconciler=reconciler,
        scanner=scanner,
        flows=FlowRegistry(ttl_seconds=settings.flow_ttl_seconds),
        notifier=notifier,
        today=today,
    )


_SERVICES: Services | None = None


def get_services() -> Services:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services(get_settings())
    return _SERVICES


def set_services(services: Services | None) -> None:
    global _SERVICES
    _SERVICES = services
