import asyncio

import pytest

from conftest import FakeShell, fixed_today
from vpn_provisioner.adapters.protocols import build_adapters, render
from vpn_provisioner.adapters.protocols.base import Operation
from vpn_provisioner.adapters.protocols.bundle import BundleAdapter
from vpn_provisioner.errors import HostAuthError, SessionTimeoutError
from vpn_provisioner.models import (
    AccountRequest,
    FailureCategory,
    OperationState,
    Protocol,
    RawOutput,
    ServerTarget,
    Verb,
)

SERVER = ServerTarget(id=1, domain="vpn1.example.com", auth="rootpass", name="SG-1")


def adapters_for(shell, settings):
    return build_adapters(shell, settings, fixed_today)


def run(coro):
    return asyncio.run(coro)


def test_every_protocol_has_an_adapter(settings):
    adapters = adapters_for(FakeShell(), settings)
    assert set(adapters) == set(Protocol)


@pytest.mark.parametrize("username", ["bad user", "", "a;rm", "budi!"])
def test_invalid_username_never_opens_a_session(settings, username):
    shell = FakeShell()
    adapter = adapters_for(shell, settings)[Protocol.VMESS]
    outcome = run(adapter.create(SERVER, AccountRequest(username=username, days=7)))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.VALIDATION
    assert outcome.message == render.MSG_INVALID_USERNAME
    assert outcome.actionable
    assert not outcome.refund
    assert shell.calls == []


def test_days_must_be_positive(settings):
    shell = FakeShell()
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="alice1", days=0)))
    assert outcome.category is FailureCategory.VALIDATION
    assert shell.calls == []


def test_ssh_password_is_required(settings):
    shell = FakeShell()
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.create(SERVER, AccountRequest(username="alice1", days=7, password="has space")))
    assert outcome.category is FailureCategory.VALIDATION
    assert shell.calls == []


def test_ssh_create_success(settings):
    shell = FakeShell("DEBUG:user=alice1\nDEBUG:exp_date=2025-01-17\nDEBUG:ip_limit=2\nSUCCESS\n")
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    request = AccountRequest(username="alice1", days=7, ip_limit=2, password="secret1", price=10000)
    outcome = run(adapter.create(SERVER, request))

    assert outcome.ok
    assert not outcome.soft
    assert outcome.state is OperationState.SUCCEEDED
    assert outcome.expires_at == "2025-01-17"
    assert outcome.credential == "secret1"
    assert "vpn1.example.com" in outcome.message
    assert "2025-01-17" in outcome.message
    assert "Rp 10.000" in outcome.message
    assert outcome.message.endswith("[RAW_EXPIRY:2025-01-17]")
    assert len(shell.calls) == 1
    assert shell.calls[0].timeout == settings.timeout_create
    assert "exp_date=2025-01-17" in shell.calls[0].script


def test_create_already_exists_is_actionable(settings):
    shell = FakeShell("ERROR:User already exists\n")
    adapter = adapters_for(shell, settings)[Protocol.VLESS]
    outcome = run(adapter.create(SERVER, AccountRequest(username="alice1", days=7)))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.ALREADY_EXISTS
    assert outcome.message == render.MSG_ALREADY_EXISTS
    assert outcome.actionable
    assert not outcome.refund


def test_delete_missing_user_is_soft_success(settings):
    shell = FakeShell("ERROR:User not found\n")
    adapter = adapters_for(shell, settings)[Protocol.TROJAN]
    outcome = run(adapter.delete(SERVER, "ghost1"))
    assert outcome.ok
    assert outcome.soft
    assert outcome.category is FailureCategory.NOT_FOUND
    assert outcome.message.startswith("⚠️")


def test_renew_missing_user_fails(settings):
    shell = FakeShell("ERROR:User not found\n")
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="ghost1", days=30)))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.NOT_FOUND
    assert outcome.message == render.MSG_RENEW_NOT_FOUND
    assert outcome.refund


def test_renew_uses_host_reported_expiry(settings):
    shell = FakeShell("DEBUG:old_exp=2025-01-10\nDEBUG:new_exp=2025-02-09\nSUCCESS\n")
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="alice1", days=30, ip_limit=2)))
    assert outcome.ok
    assert outcome.old_expires_at == "2025-01-10"
    assert outcome.expires_at == "2025-02-09"
    assert "[RAW_EXPIRY:2025-02-09]" in outcome.message
    assert "Quota" not in outcome.message


def test_renew_computes_expiry_when_host_is_silent(settings):
    shell = FakeShell("DEBUG:old_exp=2025-01-10\nSUCCESS\n")
    adapter = adapters_for(shell, settings)[Protocol.VMESS]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="alice1", days=30, quota_gb=50)))
    assert outcome.expires_at == "2025-02-09"
    assert "50 GB" in outcome.message


def test_renew_without_old_expiry_counts_from_today(settings):
    shell = FakeShell("DEBUG:old_exp=\nSUCCESS\n")
    adapter = adapters_for(shell, settings)[Protocol.VMESS]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="alice1", days=5)))
    assert outcome.expires_at == "2025-01-15"


def test_timeout_is_refundable(settings):
    shell = FakeShell(SessionTimeoutError("Timeout koneksi ke server."))
    adapter = adapters_for(shell, settings)[Protocol.VMESS]
    outcome = run(adapter.create(SERVER, AccountRequest(username="alice1", days=7)))
    assert outcome.state is OperationState.TIMED_OUT
    assert outcome.category is FailureCategory.TIMEOUT
    assert outcome.refund
    assert outcome.message.startswith("❌")


def test_auth_failure(settings):
    shell = FakeShell(HostAuthError("Password root VPS salah."))
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.delete(SERVER, "alice1"))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.AUTH


def test_unrecognised_output_is_parse_failure(settings):
    shell = FakeShell("bash: line 3: xray: command not found\n")
    adapter = adapters_for(shell, settings)[Protocol.VLESS]
    outcome = run(adapter.delete(SERVER, "alice1"))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.PARSE


def test_nonzero_exit_without_marker_is_script_failure(settings):
    shell = FakeShell(RawOutput(stdout="", stderr="bash: line 3: xray: command not found\n", exit_status=127))
    adapter = adapters_for(shell, settings)[Protocol.VLESS]
    outcome = run(adapter.delete(SERVER, "alice1"))
    assert outcome.state is OperationState.FAILED
    assert outcome.category is FailureCategory.REMOTE_SCRIPT
    assert "127" in outcome.message
    assert outcome.refund


def test_generic_remote_error(settings):
    shell = FakeShell("ERROR:useradd failed\n")
    adapter = adapters_for(shell, settings)[Protocol.SSH]
    outcome = run(adapter.create(SERVER, AccountRequest(username="alice1", days=7, password="secret1")))
    assert outcome.category is FailureCategory.REMOTE_SCRIPT
    assert "useradd failed" in outcome.message


def test_xray_create_generates_credential_and_links(settings):
    shell = FakeShell()
    adapter = adapters_for(shell, settings)[Protocol.VLESS]
    outcome = run(adapter.create(SERVER, AccountRequest(username="bob", days=30, quota_gb=100)))
    assert outcome.ok
    assert len(outcome.credential) == 36
    assert outcome.links["ws"].startswith(f"vless://{outcome.credential}@vpn1.example.com")
    assert outcome.credential in shell.calls[0].script


def test_trojan_credential_is_hex(settings):
    adapter = adapters_for(FakeShell(), settings)[Protocol.TROJAN]
    outcome = run(adapter.create(SERVER, AccountRequest(username="bob", days=30)))
    assert len(outcome.credential) == 32
    int(outcome.credential, 16)


def test_trial_generates_username(settings):
    shell = FakeShell("DEBUG:expiration=2025-01-10 13:00\nDEBUG:trial_minutes=60\nSUCCESS\n")
    adapter = adapters_for(shell, settings)[Protocol.VMESS]
    outcome = run(adapter.trial(SERVER))
    assert outcome.ok
    assert outcome.username.startswith("trial")
    assert "60 menit" in outcome.message
    assert "2025-01-10 13:00" in outcome.message
    assert shell.calls[0].timeout == settings.timeout_trial


def test_bundle_partial_success_under_any_policy(settings):
    shell = FakeShell("SUCCESS", "ERROR:config write failed", "SUCCESS")
    adapter = adapters_for(shell, settings)[Protocol.BUNDLE]
    outcome = run(adapter.create(SERVER, AccountRequest(username="carol1", days=30)))

    assert outcome.ok
    assert outcome.soft
    assert [c.ok for c in outcome.constituents] == [True, False, True]
    assert [c.protocol for c in outcome.constituents] == [Protocol.VMESS, Protocol.VLESS, Protocol.TROJAN]
    assert "❌ VLESS" in outcome.message
    assert outcome.expires_at == "2025-02-09"
    # One credential shared by every member.
    assert all(outcome.credential in call.script for call in shell.calls)
    assert all(call.timeout == settings.timeout_bundle for call in shell.calls)


def test_bundle_all_policy_rolls_back(settings):
    shell = FakeShell("SUCCESS", "ERROR:config write failed", "SUCCESS", "SUCCESS", "SUCCESS")
    members = {p: a for p, a in adapters_for(shell, settings).items() if p is not Protocol.BUNDLE}
    adapter = BundleAdapter(members, settings, policy="all")
    outcome = run(adapter.create(SERVER, AccountRequest(username="carol1", days=30)))

    assert outcome.state is OperationState.FAILED
    assert outcome.refund
    # Three creates, then deletes for the two members that went through.
    assert len(shell.calls) == 5
    assert "User not found" in shell.calls[3].script


def test_bundle_all_members_already_exist(settings):
    shell = FakeShell(*["ERROR:User already exists"] * 3)
    adapter = adapters_for(shell, settings)[Protocol.BUNDLE]
    outcome = run(adapter.create(SERVER, AccountRequest(username="carol1", days=30)))
    assert outcome.category is FailureCategory.ALREADY_EXISTS
    assert outcome.message.startswith(render.MSG_ALREADY_EXISTS)
    assert outcome.actionable


def test_bundle_timeout_everywhere(settings):
    shell = FakeShell(*[SessionTimeoutError("Timeout")] * 3)
    adapter = adapters_for(shell, settings)[Protocol.BUNDLE]
    outcome = run(adapter.delete(SERVER, "carol1"))
    assert outcome.state is OperationState.TIMED_OUT
    assert outcome.category is FailureCategory.TIMEOUT


def test_bundle_delete_when_nothing_is_left(settings):
    shell = FakeShell(*["ERROR:User not found"] * 3)
    adapter = adapters_for(shell, settings)[Protocol.BUNDLE]
    outcome = run(adapter.delete(SERVER, "carol1"))
    assert outcome.ok
    assert outcome.soft
    assert outcome.message.startswith(render.MSG_DELETE_NOT_FOUND)


def test_bundle_renew_reports_latest_expiry(settings):
    shell = FakeShell(
        "DEBUG:new_exp=2025-02-09\nSUCCESS",
        "DEBUG:new_exp=2025-02-11\nSUCCESS",
        "ERROR:User not found",
    )
    adapter = adapters_for(shell, settings)[Protocol.BUNDLE]
    outcome = run(adapter.renew(SERVER, AccountRequest(username="carol1", days=30)))
    assert outcome.ok
    assert outcome.expires_at == "2025-02-11"
    assert outcome.category is FailureCategory.NOT_FOUND


def test_renew_and_delete_validate_username_too(settings):
    shell = FakeShell()
    adapters = adapters_for(shell, settings)
    renew = run(adapters[Protocol.SSH].renew(SERVER, AccountRequest(username="bad user", days=30)))
    delete = run(adapters[Protocol.BUNDLE].delete(SERVER, "bad/user"))
    assert renew.category is FailureCategory.VALIDATION
    assert delete.category is FailureCategory.VALIDATION
    assert shell.calls == []


def test_operation_rejects_illegal_transition():
    op = Operation(Verb.CREATE, Protocol.VMESS, "alice1", "vpn1.example.com")
    with pytest.raises(RuntimeError):
        op.advance(OperationState.SUCCEEDED)
    op.advance(OperationState.FAILED)
    # Terminal states are sticky.
    assert op.advance(OperationState.CONNECTING) is False
    assert op.state is OperationState.FAILED
