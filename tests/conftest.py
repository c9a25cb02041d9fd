import asyncio
from dataclasses import dataclass, replace
from datetime import date

import pytest

from vpn_provisioner.adapters.database import Database
from vpn_provisioner.config import Settings
from vpn_provisioner.models import RawOutput, ServerTarget
from vpn_provisioner.services import build_services
from vpn_provisioner.services.notifier import LogNotifier

TODAY = date(2025, 1, 10)


def fixed_today() -> date:
    return TODAY


@dataclass
class ShellCall:
    target: ServerTarget
    script: str
    timeout: float


class FakeShell:
    """Stands in for RemoteShell; replies are consumed in order, default SUCCESS."""

    def __init__(self, *replies, delay: float = 0.0):
        self.replies = list(replies)
        self.calls: list[ShellCall] = []
        self.delay = delay
        self.active = 0
        self.max_active = 0

    def queue(self, *replies) -> None:
        self.replies.extend(replies)

    async def execute(self, target, script, timeout, on_ready=None):
        self.calls.append(ShellCall(target, script, timeout))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.replies.pop(0) if self.replies else "SUCCESS"
            if isinstance(reply, BaseException):
                raise reply
            if on_ready is not None:
                on_ready()
            if isinstance(reply, RawOutput):
                return reply
            return RawOutput(stdout=reply)
        finally:
            self.active -= 1


class FailingNotifier:
    async def send(self, chat_id, text):
        raise RuntimeError("telegram down")


def make_settings(tmp_path, **overrides) -> Settings:
    base = Settings(
        internal_shared_secret="s3cret",
        backend_host="127.0.0.1",
        backend_port=8080,
        database_path=str(tmp_path / "provisioner.db"),
        ssh_port=22,
        ssh_username="root",
        ssh_ready_timeout=5.0,
        ssh_keepalive=0,
        timeout_create=35.0,
        timeout_renew=35.0,
        timeout_delete=35.0,
        timeout_trial=45.0,
        timeout_bundle=45.0,
        trial_minutes=60,
        grace_days=3,
        bundle_policy="any",
        serialize_per_server=True,
        store_name="Toko VPN",
        telegram_bot_token="",
        admin_ids=frozenset({"999"}),
        flow_ttl_seconds=600,
        log_level="INFO",
        enable_dangerous_actions=True,
    )
    return replace(base, **overrides)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def shell():
    return FakeShell()


@pytest.fixture
def notifier():
    return LogNotifier()


@pytest.fixture
def services(settings, shell, notifier):
    return build_services(settings, shell=shell, notifier=notifier, today=fixed_today)


@pytest.fixture
def db(services) -> Database:
    return services.db


@pytest.fixture
def server(db) -> ServerTarget:
    target = ServerTarget(
        id=None,
        domain="vpn1.example.com",
        auth="rootpass",
        name="SG-1",
        price=10000,
        quota_gb=100,
        ip_limit=2,
    )
    target.id = db.add_server(target)
    return db.get_server(target.id)
