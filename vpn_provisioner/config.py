from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]
LOCAL_ENV_FILE = PROJECT_ROOT / ".env"

# Local .env only fills in what systemd/environment has not already injected.
if LOCAL_ENV_FILE.exists():
    load_dotenv(LOCAL_ENV_FILE, override=False)

BUNDLE_POLICIES = {"any", "all"}


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on", "y", "enable", "enabled"}


def _get_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except Exception as exc:
        raise RuntimeError(f"{name} tidak valid: {raw}") from exc
    if value < minimum or value > maximum:
        raise RuntimeError(f"{name} di luar rentang {minimum}-{maximum}: {value}")
    return value


def _get_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except Exception as exc:
        raise RuntimeError(f"{name} tidak valid: {raw}") from exc
    if value < minimum or value > maximum:
        raise RuntimeError(f"{name} di luar rentang {minimum}-{maximum}: {value}")
    return value


def _parse_id_set(name: str, raw: str | None) -> frozenset[str]:
    out: set[str] = set()
    for part in (raw or "").split(","):
        value = part.strip()
        if value:
            out.add(value)
    invalid = [value for value in out if not value.lstrip("-").isdigit()]
    if invalid:
        raise RuntimeError(f"{name} berisi ID tidak valid: {', '.join(sorted(invalid))}")
    return frozenset(out)


def _default_database_path() -> str:
    local_data = PROJECT_ROOT / "data"
    if local_data.exists():
        return str(local_data / "provisioner.db")
    return "/var/lib/vpn-provisioner/provisioner.db"


@dataclass(frozen=True)
class Settings:
    internal_shared_secret: str
    backend_host: str
    backend_port: int
    database_path: str
    ssh_port: int
    ssh_username: str
    ssh_ready_timeout: float
    ssh_keepalive: int
    timeout_create: float
    timeout_renew: float
    timeout_delete: float
    timeout_trial: float
    timeout_bundle: float
    trial_minutes: int
    grace_days: int
    bundle_policy: str
    serialize_per_server: bool
    store_name: str
    telegram_bot_token: str
    admin_ids: frozenset[str]
    flow_ttl_seconds: int
    log_level: str
    enable_dangerous_actions: bool


_SETTINGS: Settings | None = None


def load_settings() -> Settings:
    bundle_policy = (os.getenv("BUNDLE_POLICY") or "any").strip().lower()
    if bundle_policy not in BUNDLE_POLICIES:
        raise RuntimeError(f"BUNDLE_POLICY harus any/all: {bundle_policy}")

    return Settings(
        internal_shared_secret=os.getenv("INTERNAL_SHARED_SECRET", "").strip(),
        backend_host=os.getenv("BACKEND_HOST", "127.0.0.1").strip(),
        backend_port=_get_int("BACKEND_PORT", 8080, 1, 65535),
        database_path=os.getenv("DATABASE_PATH", _default_database_path()).strip(),
        ssh_port=_get_int("SSH_PORT", 22, 1, 65535),
        ssh_username=os.getenv("SSH_USER", "root").strip() or "root",
        ssh_ready_timeout=_get_float("SSH_READY_TIMEOUT", 30.0, 1.0, 300.0),
        ssh_keepalive=_get_int("SSH_KEEPALIVE", 10, 0, 600),
        timeout_create=_get_float("TIMEOUT_CREATE", 35.0, 1.0, 600.0),
        timeout_renew=_get_float("TIMEOUT_RENEW", 35.0, 1.0, 600.0),
        timeout_delete=_get_float("TIMEOUT_DELETE", 35.0, 1.0, 600.0),
        timeout_trial=_get_float("TIMEOUT_TRIAL", 45.0, 1.0, 600.0),
        timeout_bundle=_get_float("TIMEOUT_BUNDLE", 45.0, 1.0, 600.0),
        trial_minutes=_get_int("TRIAL_MINUTES", 60, 1, 1440),
        grace_days=_get_int("GRACE_DAYS", 3, 0, 365),
        bundle_policy=bundle_policy,
        serialize_per_server=_get_bool("SERIALIZE_PER_SERVER", True),
        store_name=os.getenv("STORE_NAME", "VPN Store").strip(),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        admin_ids=_parse_id_set("ADMIN_IDS", os.getenv("ADMIN_IDS")),
        flow_ttl_seconds=_get_int("FLOW_TTL_SECONDS", 600, 30, 86400),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        enable_dangerous_actions=_get_bool("ENABLE_DANGEROUS_ACTIONS", True),
    )


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS
