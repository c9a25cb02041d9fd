import pytest

from vpn_provisioner.config import load_settings
from vpn_provisioner.models import Protocol


def test_defaults(monkeypatch):
    for name in ("BUNDLE_POLICY", "TIMEOUT_CREATE", "TIMEOUT_BUNDLE", "GRACE_DAYS", "ADMIN_IDS", "SSH_PORT"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.bundle_policy == "any"
    assert settings.timeout_create == 35.0
    assert settings.timeout_bundle == 45.0
    assert settings.grace_days == 3
    assert settings.ssh_port == 22
    assert settings.admin_ids == frozenset()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("BUNDLE_POLICY", "ALL")
    monkeypatch.setenv("ADMIN_IDS", "1, 2,,3")
    monkeypatch.setenv("SERIALIZE_PER_SERVER", "off")
    settings = load_settings()
    assert settings.bundle_policy == "all"
    assert settings.admin_ids == frozenset({"1", "2", "3"})
    assert settings.serialize_per_server is False


@pytest.mark.parametrize(
    "name, value",
    [
        ("BUNDLE_POLICY", "some"),
        ("TIMEOUT_CREATE", "abc"),
        ("SSH_PORT", "70000"),
        ("ADMIN_IDS", "1,alice"),
    ],
)
def test_invalid_values_fail_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError):
        load_settings()


@pytest.mark.parametrize(
    "raw, expected",
    [("ss", Protocol.SHADOWSOCKS), ("3-in-1", Protocol.BUNDLE), (" VMESS ", Protocol.VMESS), ("wg", None)],
)
def test_protocol_aliases(raw, expected):
    assert Protocol.parse(raw) is expected
