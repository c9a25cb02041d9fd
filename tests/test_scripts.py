import base64
import json
from datetime import date

import pytest

from vpn_provisioner.adapters.scripts import common, ssh, xray
from vpn_provisioner.adapters.scripts.links import build_links


def test_renewal_adds_to_existing_expiry():
    assert common.renewal_expiry("2025-01-10", 30, date(2025, 1, 1)) == date(2025, 2, 9)


def test_renewal_adds_to_past_expiry():
    # Expired accounts are renewed from their old date, not from today.
    assert common.renewal_expiry("2024-12-01", 10, date(2025, 1, 10)) == date(2024, 12, 11)


@pytest.mark.parametrize("existing", ["", None, "never", "Never", "not-a-date"])
def test_renewal_falls_back_to_today(existing):
    assert common.renewal_expiry(existing, 30, date(2025, 1, 10)) == date(2025, 2, 9)


def test_parse_expiry_chage_format():
    assert common.parse_expiry("Jan 10, 2025") == date(2025, 1, 10)


def test_trial_username_shape():
    name = common.trial_username()
    assert name.startswith("trial")
    assert len(name) == 9
    assert name[5:].isdigit()


def test_write_file_snippet_rejects_terminator():
    with pytest.raises(ValueError):
        common.write_file_snippet("/tmp/x", "a\nEOF_ACCOUNT_TEXT\nb")


def test_shell_values_are_quoted():
    script = ssh.create("alice1", "pa$$'w", "2025-01-17", 2)
    assert "pass='pa$$'\"'\"'w'" in script
    assert script.rstrip().endswith('echo "SUCCESS"')


def test_ssh_create_script_reports_fields():
    script = ssh.create("alice1", "secret1", "2025-01-17", 2, web_text="hello")
    assert "useradd" in script
    assert "chpasswd" in script
    assert "User already exists" in script
    assert "DEBUG:exp_date=" in script
    assert "/var/www/html/ssh-$user.txt" in script


def test_ssh_renew_script_reports_old_and_new_expiry():
    script = ssh.renew("alice1", 30, 2)
    assert "chage -E" in script
    assert "DEBUG:old_exp=" in script
    assert "DEBUG:new_exp=" in script
    assert "User not found" in script


def test_ssh_renew_aborts_when_chage_fails():
    script = ssh.renew("alice1", 30, 2)
    assert 'chage -E "$new_exp" "$user" || { echo "ERROR:chage failed"; exit 1; }' in script


def test_ssh_trial_schedules_self_delete():
    script = ssh.trial("trial1234", 60)
    assert "sleep 3600" in script
    assert "userdel" in script


def test_xray_client_entry_shapes():
    vless = json.loads(xray.client_entry("vless", "bob", "uuid-1")[2:])
    assert vless == {"id": "uuid-1", "email": "bob"}
    ss = json.loads(xray.client_entry("shadowsocks", "bob", "pw")[2:])
    assert ss["method"] == "aes-128-gcm"
    assert ss["password"] == "pw"


def test_xray_rejects_unknown_protocol():
    with pytest.raises(ValueError):
        xray.create("wireguard", "bob", "x", "2025-01-17", 0, 1)


def test_xray_create_inserts_under_both_anchors():
    script = xray.create("vmess", "bob", "uuid-1", "2025-01-17", 10, 2)
    assert '"#$proto" "#${proto}grpc"' in script
    assert "exp_date=2025-01-17" in script
    assert "DEBUG:uuid=" in script


def test_links_vmess_is_base64_json():
    links = build_links("vmess", "bob", "uuid-1", "vpn1.example.com")
    payload = json.loads(base64.b64decode(links["ws"][len("vmess://"):]))
    assert payload["id"] == "uuid-1"
    assert payload["add"] == "vpn1.example.com"
    assert payload["path"] == "/vmess"


def test_links_trojan_grpc():
    links = build_links("trojan", "bob", "pw", "vpn1.example.com")
    assert links["grpc"].startswith("trojan://pw@vpn1.example.com:443?")
    assert "serviceName=trojan-grpc" in links["grpc"]
