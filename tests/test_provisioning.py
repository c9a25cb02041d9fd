import asyncio

from conftest import FakeShell, fixed_today, make_settings
from vpn_provisioner.adapters.protocols import render
from vpn_provisioner.models import (
    AccountRequest,
    FailureCategory,
    OperationState,
    Protocol,
    ServerTarget,
    Verb,
)
from vpn_provisioner.services import build_services
from vpn_provisioner.services.reconciliation import index_protocols


def run(coro):
    return asyncio.run(coro)


def create_request(username="alice1", days=7, **kw):
    return AccountRequest(username=username, days=days, owner_id="42", **kw)


def test_create_records_account(services, server, shell):
    shell.queue("DEBUG:user=alice1\nDEBUG:exp_date=2025-01-17\nSUCCESS")
    outcome = run(
        services.provisioning.run(Protocol.SSH, Verb.CREATE, server.id, create_request(password="secret1"))
    )

    assert outcome.ok
    assert "vpn1.example.com" in outcome.message
    assert "2025-01-17" in outcome.message
    record = services.db.get_account("alice1", "ssh", server.id)
    assert record is not None
    assert record.status == "active"
    assert record.expired_at == "2025-01-17"
    assert record.owner_id == "42"
    assert record.server_host == "vpn1.example.com"
    assert "[RAW_EXPIRY:" not in record.raw_response
    assert services.db.get_server(server.id).accounts_created == 1
    assert services.db.active_exists("alice1", "ssh")


def test_unknown_server(services, shell):
    outcome = run(services.provisioning.run(Protocol.VMESS, Verb.CREATE, 404, create_request()))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.SERVER_NOT_FOUND
    assert outcome.message == render.MSG_SERVER_NOT_FOUND
    assert not outcome.refund
    assert shell.calls == []


def test_full_server_rejects_create_only(services, shell):
    server_id = services.db.add_server(
        ServerTarget(id=None, domain="full.example.com", auth="x", account_cap=1, accounts_created=1)
    )
    outcome = run(services.provisioning.run(Protocol.VMESS, Verb.CREATE, server_id, create_request()))
    assert outcome.category is FailureCategory.SERVER_FULL
    assert shell.calls == []

    renew = run(services.provisioning.run(Protocol.VMESS, Verb.RENEW, server_id, create_request(days=30)))
    assert renew.ok
    assert len(shell.calls) == 1


def test_failed_create_leaves_store_untouched(services, server, shell):
    shell.queue("ERROR:User already exists")
    outcome = run(services.provisioning.run(Protocol.VMESS, Verb.CREATE, server.id, create_request()))
    assert outcome.category is FailureCategory.ALREADY_EXISTS
    assert services.db.get_account("alice1", "vmess", server.id) is None
    assert services.db.get_server(server.id).accounts_created == 0
    assert not services.db.active_exists("alice1", "vmess")


def test_renew_rearms_record(services, server, shell):
    run(services.provisioning.run(Protocol.VMESS, Verb.CREATE, server.id, create_request()))
    record = services.db.get_account("alice1", "vmess", server.id)
    services.db.set_flag(record.id, "warned_3d")
    services.db.mark_expired(record.id)

    shell.queue("DEBUG:old_exp=2025-01-17\nDEBUG:new_exp=2025-02-16\nSUCCESS")
    outcome = run(services.provisioning.run(Protocol.VMESS, Verb.RENEW, server.id, create_request(days=30)))
    assert outcome.ok

    renewed = services.db.get_account("alice1", "vmess", server.id)
    assert renewed.id == record.id
    assert renewed.expired_at == "2025-02-16"
    assert renewed.status == "active"
    assert not renewed.warned_3d
    assert not renewed.expired_notified
    assert services.db.get_server(server.id).accounts_created == 1


def test_renew_of_unrecorded_account_creates_record(services, server, shell):
    shell.queue("DEBUG:old_exp=2025-01-10\nDEBUG:new_exp=2025-02-09\nSUCCESS")
    run(services.provisioning.run(Protocol.TROJAN, Verb.RENEW, server.id, create_request(days=30)))
    record = services.db.get_account("alice1", "trojan", server.id)
    assert record.expired_at == "2025-02-09"


def test_delete_forgets_account(services, server, shell):
    run(services.provisioning.run(Protocol.VLESS, Verb.CREATE, server.id, create_request()))
    outcome = run(services.provisioning.run(Protocol.VLESS, Verb.DELETE, server.id, create_request()))
    assert outcome.ok
    assert services.db.get_account("alice1", "vless", server.id) is None
    assert not services.db.active_exists("alice1", "vless")


def test_soft_delete_still_forgets_account(services, server, shell):
    run(services.provisioning.run(Protocol.VLESS, Verb.CREATE, server.id, create_request()))
    shell.queue("ERROR:User not found")
    outcome = run(services.provisioning.run(Protocol.VLESS, Verb.DELETE, server.id, create_request()))
    assert outcome.soft
    assert services.db.get_account("alice1", "vless", server.id) is None


def test_trial_is_not_recorded(services, server, shell):
    outcome = run(services.provisioning.run(Protocol.VMESS, Verb.TRIAL, server.id, AccountRequest(username="")))
    assert outcome.ok
    assert services.db.list_accounts() == []


def test_bundle_record_occupies_member_families(services, server, shell):
    run(services.provisioning.run(Protocol.BUNDLE, Verb.CREATE, server.id, create_request(days=30)))
    record = services.db.get_account("alice1", "3in1", server.id)
    assert record.expired_at == "2025-02-09"
    for family in index_protocols("3in1"):
        assert services.db.active_exists("alice1", family)
    assert not services.db.active_exists("alice1", "3in1")


def test_calls_on_one_server_are_serialized(tmp_path):
    shell = FakeShell(delay=0.02)
    services = build_services(make_settings(tmp_path), shell=shell, today=fixed_today)
    server_id = services.db.add_server(ServerTarget(id=None, domain="vpn2.example.com", auth="x"))

    async def scenario():
        await asyncio.gather(
            services.provisioning.run(Protocol.VMESS, Verb.CREATE, server_id, create_request("u1")),
            services.provisioning.run(Protocol.VLESS, Verb.CREATE, server_id, create_request("u2")),
        )

    run(scenario())
    assert shell.max_active == 1


def test_serialization_can_be_disabled(tmp_path):
    shell = FakeShell(delay=0.02)
    services = build_services(
        make_settings(tmp_path, serialize_per_server=False), shell=shell, today=fixed_today
    )
    server_id = services.db.add_server(ServerTarget(id=None, domain="vpn2.example.com", auth="x"))

    async def scenario():
        await asyncio.gather(
            services.provisioning.run(Protocol.VMESS, Verb.CREATE, server_id, create_request("u1")),
            services.provisioning.run(Protocol.VLESS, Verb.CREATE, server_id, create_request("u2")),
        )

    run(scenario())
    assert shell.max_active == 2
    assert services.db.get_server(server_id).accounts_created == 2
