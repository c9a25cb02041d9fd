from __future__ import annotations

from .common import (
    ERR_ALREADY_EXISTS,
    ERR_NOT_FOUND,
    WEB_ROOT,
    assign,
    debug,
    detect_domain,
    fail,
    or_fail,
    q,
    renewal_snippet,
    self_destruct_snippet,
    success,
    write_file_snippet,
)

SSH_DB = "/etc/ssh/.ssh.db"
LIMIT_DIR = "/etc/ssh/limit"
TRIAL_JOB_DIR = "/etc/ssh/trial-jobs"


def web_file_name(username: str) -> str:
    return f"ssh-{username}.txt"


def _db_replace_line(line_expr: str) -> str:
    return "\n".join(
        [
            f"touch {SSH_DB}",
            f'sed -i "/^### $user /d" {SSH_DB}',
            f'echo "{line_expr}" >> {SSH_DB}',
        ]
    )


def create(username: str, password: str, exp_date: str, ip_limit: int, web_text: str = "") -> str:
    parts = [
        assign(user=username, exp_date=exp_date, ip_limit=int(ip_limit)),
        f"pass={q(password)}",
        'if id "$user" >/dev/null 2>&1; then',
        "  " + fail(ERR_ALREADY_EXISTS),
        "fi",
        'useradd -M -N -s /bin/false -e "$exp_date" "$user" || {',
        '  echo "ERROR:useradd failed"',
        "  exit 1",
        "}",
        'echo "$user:$pass" | chpasswd ' + or_fail("chpasswd failed"),
        f"mkdir -p {LIMIT_DIR}",
        f'echo "$ip_limit" > {LIMIT_DIR}/$user',
        _db_replace_line("### $user $exp_date $ip_limit"),
    ]
    if web_text:
        parts.append(f"mkdir -p {WEB_ROOT}")
        parts.append(write_file_snippet(f'"{WEB_ROOT}/ssh-$user.txt"', web_text))
    parts.extend(
        [
            detect_domain(),
            debug("user", "$user"),
            debug("exp_date", "$exp_date"),
            debug("ip_limit", "$ip_limit"),
            debug("domain", "$domain"),
            success(),
        ]
    )
    return "\n".join(parts) + "\n"


def renew(username: str, days: int, ip_limit: int) -> str:
    parts = [
        assign(user=username, days=int(days), ip_limit=int(ip_limit)),
        'if ! id "$user" >/dev/null 2>&1; then',
        "  " + fail(ERR_NOT_FOUND),
        "fi",
        "old_exp=$(chage -l \"$user\" 2>/dev/null | grep 'Account expires' | cut -d: -f2- | sed 's/^ *//')",
        'echo "DEBUG:chage reported $old_exp"',
        renewal_snippet(),
        'chage -E "$new_exp" "$user" ' + or_fail("chage failed"),
        f"mkdir -p {LIMIT_DIR}",
        f'echo "$ip_limit" > {LIMIT_DIR}/$user',
        _db_replace_line("### $user $new_exp $ip_limit"),
        debug("user", "$user"),
        debug("old_exp", "$old_exp_iso"),
        debug("new_exp", "$new_exp"),
        debug("ip_limit", "$ip_limit"),
        success(),
    ]
    return "\n".join(parts) + "\n"


def delete(username: str) -> str:
    parts = [
        assign(user=username),
        'if ! id "$user" >/dev/null 2>&1; then',
        f'  sed -i "/^### $user /d" {SSH_DB} 2>/dev/null',
        f'  rm -f {LIMIT_DIR}/$user "{WEB_ROOT}/ssh-$user.txt"',
        "  " + fail(ERR_NOT_FOUND),
        "fi",
        'pkill -u "$user" >/dev/null 2>&1 || true',
        'userdel -r "$user" >/dev/null 2>&1 || userdel -f "$user"',
        f'rm -f {LIMIT_DIR}/$user "{WEB_ROOT}/ssh-$user.txt"',
        f'sed -i "/^### $user /d" {SSH_DB}',
        debug("user", "$user"),
        success(),
    ]
    return "\n".join(parts) + "\n"


def trial(username: str, minutes: int, web_text: str = "") -> str:
    """Short-lived account whose password is its username, removed by a host-side job."""
    job_path = f"{TRIAL_JOB_DIR}/{username}.sh"
    parts = [
        assign(user=username, minutes=int(minutes)),
        'if id "$user" >/dev/null 2>&1; then',
        "  " + fail(ERR_ALREADY_EXISTS),
        "fi",
        'exp_date=$(date -d "+1 days" +%Y-%m-%d)',
        'expiration=$(date -d "+${minutes} minutes" "+%Y-%m-%d %H:%M")',
        'useradd -M -N -s /bin/false -e "$exp_date" "$user" || {',
        '  echo "ERROR:useradd failed"',
        "  exit 1",
        "}",
        'echo "$user:$user" | chpasswd ' + or_fail("chpasswd failed"),
        f"mkdir -p {LIMIT_DIR} {TRIAL_JOB_DIR}",
        f'echo "1" > {LIMIT_DIR}/$user',
        _db_replace_line("### $user $exp_date 1"),
    ]
    if web_text:
        parts.append(f"mkdir -p {WEB_ROOT}")
        parts.append(write_file_snippet(f'"{WEB_ROOT}/ssh-$user.txt"', web_text))
    parts.extend(
        [
            self_destruct_snippet(job_path, delete(username), minutes),
            detect_domain(),
            debug("user", "$user"),
            debug("password", "$user"),
            debug("expiration", "$expiration"),
            debug("trial_minutes", "$minutes"),
            debug("domain", "$domain"),
            success(),
        ]
    )
    return "\n".join(parts) + "\n"
