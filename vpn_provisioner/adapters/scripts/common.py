"""Shared pieces of the remote bash scripts.

Every generated script speaks the same line grammar on stdout:

``SUCCESS``               the mutation completed
``ERROR:<reason>``        a recognised precondition failed (script exits 1)
``DEBUG:<key>=<value>``   a structured field for the caller
``DEBUG:<text>``          diagnostics, ignored by classification

Anything else is noise and is ignored by the parser.
"""

from __future__ import annotations

import secrets
import shlex
from datetime import date, datetime, timedelta

MARK_SUCCESS = "SUCCESS"
MARK_ERROR = "ERROR:"
MARK_DEBUG = "DEBUG:"

ERR_ALREADY_EXISTS = "User already exists"
ERR_NOT_FOUND = "User not found"

WEB_ROOT = "/var/www/html"
WEB_PORT = 81
DOMAIN_FILE = "/etc/xray/domain"

_HEREDOC_END = "EOF_ACCOUNT_TEXT"

# Formats the hosts may hand back for an existing expiry (db files, chage -l).
_EXPIRY_FORMATS = ("%Y-%m-%d", "%b %d, %Y", "%d %b, %Y", "%Y-%m-%d %H:%M")


def q(value: object) -> str:
    return shlex.quote(str(value))


def assign(**values: object) -> str:
    return "\n".join(f"{name}={q(value)}" for name, value in values.items())


def debug(key: str, shell_expr: str) -> str:
    return f'echo "{MARK_DEBUG}{key}={shell_expr}"'


def fail(reason: str) -> str:
    return f'echo "{MARK_ERROR}{reason}"\n  exit 1'


def or_fail(reason: str) -> str:
    """Suffix for a command whose failure must abort the script."""
    return f'|| {{ echo "{MARK_ERROR}{reason}"; exit 1; }}'


def success() -> str:
    return f'echo "{MARK_SUCCESS}"'


def detect_domain() -> str:
    return f'domain=$(cat {DOMAIN_FILE} 2>/dev/null || hostname -f)'


def renewal_snippet(old_var: str = "old_exp", days_var: str = "days", new_var: str = "new_exp") -> str:
    """Additive renewal on the host: existing expiry + days, else today + days."""
    return "\n".join(
        [
            f'if [ -z "${old_var}" ] || [ "${old_var}" = "never" ] || ! date -d "${old_var}" +%Y-%m-%d >/dev/null 2>&1; then',
            f'  echo "{MARK_DEBUG}no parseable expiry, counting from today"',
            f'  {new_var}=$(date -d "+${{{days_var}}} days" +%Y-%m-%d)',
            "else",
            f'  {new_var}=$(date -d "${old_var} +${{{days_var}}} days" +%Y-%m-%d)',
            "fi",
            f'{old_var}_iso=$(date -d "${old_var}" +%Y-%m-%d 2>/dev/null || echo "")',
        ]
    )


def write_file_snippet(path_expr: str, content: str) -> str:
    body = content.rstrip("\n")
    if _HEREDOC_END in body.splitlines():
        raise ValueError("content contains heredoc terminator")
    return f"cat > {path_expr} <<'{_HEREDOC_END}'\n{body}\n{_HEREDOC_END}"


def self_destruct_snippet(job_path: str, delete_script: str, minutes: int) -> str:
    """Schedule ``delete_script`` to run on the host after ``minutes``."""
    return "\n".join(
        [
            write_file_snippet(q(job_path), delete_script),
            f"chmod 700 {q(job_path)}",
            f'(nohup bash -c "sleep {int(minutes) * 60}; bash {job_path}; rm -f {job_path}" >/dev/null 2>&1 &)',
        ]
    )


def web_url(domain: str, file_name: str) -> str:
    return f"https://{domain}:{WEB_PORT}/{file_name}"


def parse_expiry(raw: str | None) -> date | None:
    text = (raw or "").strip()
    if not text or text.lower() == "never":
        return None
    for fmt in _EXPIRY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def renewal_expiry(existing: str | None, days: int, today: date) -> date:
    current = parse_expiry(existing)
    if current is None:
        return today + timedelta(days=days)
    return current + timedelta(days=days)


def trial_username() -> str:
    return "trial" + "".join(secrets.choice("0123456789") for _ in range(4))
