from __future__ import annotations

import json

from .common import (
    ERR_ALREADY_EXISTS,
    ERR_NOT_FOUND,
    WEB_ROOT,
    assign,
    debug,
    fail,
    or_fail,
    renewal_snippet,
    self_destruct_snippet,
    success,
    write_file_snippet,
)
from .links import SS_METHOD

XRAY_ROOT = "/etc/xray"
XRAY_PROTOCOLS = ("vmess", "vless", "trojan", "shadowsocks")

# Client entries are keyed by "id" for UUID variants and by "password" otherwise.
_PASSWORD_KEYED = {"trojan", "shadowsocks"}

_HEADER = "\n".join(
    [
        'cfg="/etc/xray/$proto/config.json"',
        'db="/etc/xray/$proto/.$proto.db"',
        'mkdir -p "/etc/xray/$proto"',
        'touch "$db"',
    ]
)

ERR_CONFIG_MISSING = "Xray config not found"
ERR_ANCHOR_MISSING = "config anchor not found"
ERR_CONFIG_WRITE = "failed to update config"

_RESTART = 'systemctl restart "$proto@config" 2>/dev/null || systemctl restart "xray@$proto" 2>/dev/null'

_QUOTA_FILES = "\n".join(
    [
        'if [ "$quota" != "0" ]; then',
        '  echo "$((quota * 1024 * 1024 * 1024))" > "/etc/xray/$proto/$user"',
        '  echo "$ip_limit" > "/etc/xray/$proto/${user}IP"',
        "else",
        '  rm -f "/etc/xray/$proto/$user" "/etc/xray/$proto/${user}IP"',
        "fi",
    ]
)

# Drops the "### user" marker and the client entry that follows it.
_REMOVE_ENTRY = (
    "awk -v mark=\"### $user \" 'skip { skip = 0; next } index($0, mark) == 1 { skip = 1; next } { print }' "
    '"$cfg" > "$cfg.tmp" && mv "$cfg.tmp" "$cfg" ' + or_fail(ERR_CONFIG_WRITE)
)


def _check_proto(proto: str) -> None:
    if proto not in XRAY_PROTOCOLS:
        raise ValueError(f"unsupported xray protocol: {proto}")


def web_file_name(proto: str, username: str) -> str:
    return f"{proto}-{username}.txt"


def client_entry(proto: str, username: str, cred: str) -> str:
    _check_proto(proto)
    if proto in _PASSWORD_KEYED:
        body: dict[str, str] = {"password": cred}
        if proto == "shadowsocks":
            body["method"] = SS_METHOD
    else:
        body = {"id": cred}
    body["email"] = username
    return "}," + json.dumps(body, separators=(",", ": "))


def _insert_entry() -> str:
    # Each protocol config carries a ws anchor (#proto) and a grpc anchor (#protogrpc).
    return "\n".join(
        [
            'for anchor in "#$proto" "#${proto}grpc"; do',
            "  awk -v anchor=\"$anchor\" -v mark=\"### $user $exp_date\" -v entry=\"$entry\" "
            "'{ print } $0 ~ (\"(^|[[:space:]])\" anchor \"$\") { print mark; print entry }' "
            '"$cfg" > "$cfg.tmp" && mv "$cfg.tmp" "$cfg" ' + or_fail(ERR_CONFIG_WRITE),
            "done",
            'grep -q "^### $user " "$cfg" ' + or_fail(ERR_ANCHOR_MISSING),
        ]
    )


def _create_body(proto: str, username: str, cred: str, quota_gb: int, ip_limit: int, web_text: str) -> list[str]:
    # Expects $exp_date to be set by the caller.
    parts = [
        assign(
            proto=proto,
            user=username,
            cred=cred,
            quota=int(quota_gb),
            ip_limit=int(ip_limit),
            entry=client_entry(proto, username, cred),
        ),
        _HEADER,
        '[ -f "$cfg" ] ' + or_fail(ERR_CONFIG_MISSING),
        'if grep -q "^### $user " "$cfg" 2>/dev/null; then',
        "  " + fail(ERR_ALREADY_EXISTS),
        "fi",
        _insert_entry(),
        _QUOTA_FILES,
        'grep -v "^### $user " "$db" > "$db.tmp" 2>/dev/null || true',
        'mv "$db.tmp" "$db"',
        'echo "### $user $exp_date $cred" >> "$db"',
    ]
    if web_text:
        parts.append(f"mkdir -p {WEB_ROOT}")
        parts.append(write_file_snippet(f'"{WEB_ROOT}/$proto-$user.txt"', web_text))
    parts.extend(
        [
            _RESTART,
            debug("user", "$user"),
            debug("uuid", "$cred"),
            debug("exp_date", "$exp_date"),
            debug("quota", "$quota"),
            debug("ip_limit", "$ip_limit"),
        ]
    )
    return parts


def create(
    proto: str,
    username: str,
    cred: str,
    exp_date: str,
    quota_gb: int,
    ip_limit: int,
    web_text: str = "",
) -> str:
    _check_proto(proto)
    parts = [assign(exp_date=exp_date)]
    parts.extend(_create_body(proto, username, cred, quota_gb, ip_limit, web_text))
    parts.append(success())
    return "\n".join(parts) + "\n"


def renew(proto: str, username: str, days: int, quota_gb: int, ip_limit: int) -> str:
    _check_proto(proto)
    parts = [
        assign(proto=proto, user=username, days=int(days), quota=int(quota_gb), ip_limit=int(ip_limit)),
        _HEADER,
        'if ! grep -q "^### $user " "$cfg" 2>/dev/null; then',
        "  " + fail(ERR_NOT_FOUND),
        "fi",
        "old_exp=$(grep -E \"^### $user \" \"$db\" | head -n1 | cut -d ' ' -f 3)",
        'if [ -z "$old_exp" ]; then',
        "  old_exp=$(grep \"^### $user \" \"$cfg\" | head -n1 | awk '{print $3}')",
        "fi",
        'echo "DEBUG:stored expiry $old_exp"',
        renewal_snippet(),
        "cred=$(grep -E \"^### $user \" \"$db\" | head -n1 | cut -d ' ' -f 4)",
        _QUOTA_FILES,
        'sed -i "s/^### $user .*/### $user $new_exp/" "$cfg" ' + or_fail(ERR_CONFIG_WRITE),
        'grep -v "^### $user " "$db" > "$db.tmp" 2>/dev/null || true',
        'mv "$db.tmp" "$db"',
        'echo "### $user $new_exp $cred" >> "$db"',
        _RESTART,
        debug("user", "$user"),
        debug("old_exp", "$old_exp_iso"),
        debug("new_exp", "$new_exp"),
        debug("uuid", "$cred"),
        debug("quota", "$quota"),
        debug("ip_limit", "$ip_limit"),
        success(),
    ]
    return "\n".join(parts) + "\n"


def delete(proto: str, username: str) -> str:
    _check_proto(proto)
    cleanup = f'rm -f "/etc/xray/$proto/$user" "/etc/xray/$proto/${{user}}IP" "{WEB_ROOT}/$proto-$user.txt"'
    parts = [
        assign(proto=proto, user=username),
        _HEADER,
        'if ! grep -q "^### $user " "$cfg" 2>/dev/null; then',
        '  sed -i "/^### $user /d" "$db" 2>/dev/null',
        "  " + cleanup,
        "  " + fail(ERR_NOT_FOUND),
        "fi",
        _REMOVE_ENTRY,
        'sed -i "/^### $user /d" "$db"',
        cleanup,
        _RESTART,
        debug("user", "$user"),
        success(),
    ]
    return "\n".join(parts) + "\n"


def trial(proto: str, username: str, cred: str, minutes: int, web_text: str = "") -> str:
    """Unmetered single-IP account that a host-side job removes after ``minutes``."""
    _check_proto(proto)
    job_path = f"{XRAY_ROOT}/{proto}/trial-{username}.sh"
    parts = [
        assign(minutes=int(minutes)),
        "exp_date=$(date +%Y-%m-%d)",
        'expiration=$(date -d "+${minutes} minutes" "+%Y-%m-%d %H:%M")',
    ]
    parts.extend(_create_body(proto, username, cred, 0, 1, web_text))
    parts.extend(
        [
            self_destruct_snippet(job_path, delete(proto, username), minutes),
            debug("expiration", "$expiration"),
            debug("trial_minutes", "$minutes"),
            success(),
        ]
    )
    return "\n".join(parts) + "\n"
