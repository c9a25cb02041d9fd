from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from ..models import AccountRecord, ServerTarget

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS servers(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  domain TEXT NOT NULL,
  auth TEXT NOT NULL,
  name TEXT NOT NULL DEFAULT '',
  price INTEGER NOT NULL DEFAULT 0,
  quota_gb INTEGER NOT NULL DEFAULT 0,
  ip_limit INTEGER NOT NULL DEFAULT 0,
  account_cap INTEGER NOT NULL DEFAULT 0,
  accounts_created INTEGER NOT NULL DEFAULT 0,
  isp TEXT NOT NULL DEFAULT '',
  location TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS accounts(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  username TEXT NOT NULL,
  protocol TEXT NOT NULL,
  server_id INTEGER NOT NULL,
  server_host TEXT NOT NULL,
  owner_id TEXT NOT NULL DEFAULT '',
  status TEXT NOT NULL DEFAULT 'active',
  created_at TEXT NOT NULL,
  expired_at TEXT NOT NULL,
  raw_response TEXT NOT NULL DEFAULT '',
  warned_3d INTEGER NOT NULL DEFAULT 0,
  warned_1d INTEGER NOT NULL DEFAULT 0,
  expired_notified INTEGER NOT NULL DEFAULT 0,
  UNIQUE(username, server_id, protocol)
);
CREATE INDEX IF NOT EXISTS idx_accounts_expired_at ON accounts(expired_at);
CREATE TABLE IF NOT EXISTS active_accounts(
  username TEXT NOT NULL,
  protocol TEXT NOT NULL,
  PRIMARY KEY(username, protocol)
);
"""

SERVER_FIELDS = ("domain", "auth", "name", "price", "quota_gb", "ip_limit", "account_cap", "isp", "location")
FLAG_COLUMNS = ("warned_3d", "warned_1d", "expired_notified")


def utc_now_text() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _server_from_row(row: sqlite3.Row) -> ServerTarget:
    return ServerTarget(
        id=row["id"],
        domain=row["domain"],
        auth=row["auth"],
        name=row["name"],
        price=row["price"],
        quota_gb=row["quota_gb"],
        ip_limit=row["ip_limit"],
        account_cap=row["account_cap"],
        accounts_created=row["accounts_created"],
        isp=row["isp"],
        location=row["location"],
        created_at=row["created_at"],
    )


def _account_from_row(row: sqlite3.Row) -> AccountRecord:
    return AccountRecord(
        id=row["id"],
        username=row["username"],
        protocol=row["protocol"],
        server_id=row["server_id"],
        server_host=row["server_host"],
        owner_id=row["owner_id"],
        status=row["status"],
        created_at=row["created_at"],
        expired_at=row["expired_at"],
        raw_response=row["raw_response"],
        warned_3d=bool(row["warned_3d"]),
        warned_1d=bool(row["warned_1d"]),
        expired_notified=bool(row["expired_notified"]),
    )


class Database:
    def __init__(self, path: str):
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._init()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init(self) -> None:
        with self._conn() as c:
            c.executescript(SCHEMA_SQL)

    # servers

    def add_server(self, server: ServerTarget) -> int:
        with self._conn() as c:
            cur = c.execute(
                """
INSERT INTO servers(domain, auth, name, price, quota_gb, ip_limit, account_cap, accounts_created, isp, location, created_at)
VALUES (:domain, :auth, :name, :price, :quota_gb, :ip_limit, :account_cap, :accounts_created, :isp, :location, :created_at)
""",
                {
                    "domain": server.domain,
                    "auth": server.auth,
                    "name": server.name,
                    "price": server.price,
                    "quota_gb": server.quota_gb,
                    "ip_limit": server.ip_limit,
                    "account_cap": server.account_cap,
                    "accounts_created": server.accounts_created,
                    "isp": server.isp,
                    "location": server.location,
                    "created_at": server.created_at or utc_now_text(),
                },
            )
            return int(cur.lastrowid)

    def get_server(self, server_id: int) -> ServerTarget | None:
        with self._conn() as c:
            row = c.execute("SELECT * FROM servers WHERE id=?", (server_id,)).fetchone()
        return _server_from_row(row) if row else None

    def list_servers(self) -> list[ServerTarget]:
        with self._conn() as c:
            rows = c.execute("SELECT * FROM servers ORDER BY id").fetchall()
        return [_server_from_row(r) for r in rows]

    def update_server(self, server_id: int, **fields: Any) -> bool:
        unknown = set(fields) - set(SERVER_FIELDS)
        if unknown:
            raise ValueError(f"unknown server fields: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_server(server_id) is not None
        assignments = ", ".join(f"{name}=:{name}" for name in fields)
        with self._conn() as c:
            cur = c.execute(f"UPDATE servers SET {assignments} WHERE id=:id", {**fields, "id": server_id})
            return cur.rowcount > 0

    def delete_server(self, server_id: int) -> bool:
        with self._conn() as c:
            cur = c.execute("DELETE FROM servers WHERE id=?", (server_id,))
            return cur.rowcount > 0

    def increment_accounts_created(self, server_id: int, by: int = 1) -> None:
        with self._conn() as c:
            c.execute("UPDATE servers SET accounts_created = accounts_created + ? WHERE id=?", (by, server_id))

    # accounts

    def get_account(self, username: str, protocol: str, server_id: int) -> AccountRecord | None:
        with self._conn() as c:
            row = c.execute(
                "SELECT * FROM accounts WHERE username=? AND protocol=? AND server_id=?",
                (username, protocol, server_id),
            ).fetchone()
        return _account_from_row(row) if row else None

    def insert_account(self, record: AccountRecord) -> int:
        with self._conn() as c:
            cur = c.execute(
                """
INSERT INTO accounts(username, protocol, server_id, server_host, owner_id, status, created_at, expired_at, raw_response)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
""",
                (
                    record.username,
                    record.protocol,
                    record.server_id,
                    record.server_host,
                    record.owner_id,
                    record.status,
                    record.created_at or utc_now_text(),
                    record.expired_at,
                    record.raw_response,
                ),
            )
            return int(cur.lastrowid)

    def rearm_account(self, account_id: int, expired_at: str, raw_response: str) -> None:
        """Renewal: new expiry, back to active, all notification flags cleared."""
        with self._conn() as c:
            c.execute(
                """
UPDATE accounts
SET expired_at=?, status='active', raw_response=?, warned_3d=0, warned_1d=0, expired_notified=0
WHERE id=?
""",
                (expired_at, raw_response, account_id),
            )

    def delete_account(self, username: str, protocol: str, server_id: int) -> bool:
        with self._conn() as c:
            cur = c.execute(
                "DELETE FROM accounts WHERE username=? AND protocol=? AND server_id=?",
                (username, protocol, server_id),
            )
            return cur.rowcount > 0

    def list_accounts(self, owner_id: str | None = None, status: str | None = None) -> list[AccountRecord]:
        cond = "1=1"
        args: list[Any] = []
        if owner_id:
            cond += " AND owner_id=?"
            args.append(owner_id)
        if status:
            cond += " AND status=?"
            args.append(status)
        with self._conn() as c:
            rows = c.execute(f"SELECT * FROM accounts WHERE {cond} ORDER BY expired_at, id", args).fetchall()
        return [_account_from_row(r) for r in rows]

    def accounts_expiring_on(self, day: str, flag: str) -> list[AccountRecord]:
        if flag not in FLAG_COLUMNS:
            raise ValueError(f"unknown flag column: {flag}")
        with self._conn() as c:
            rows = c.execute(
                f"SELECT * FROM accounts WHERE status='active' AND expired_at=? AND {flag}=0 ORDER BY id",
                (day,),
            ).fetchall()
        return [_account_from_row(r) for r in rows]

    def accounts_recently_expired(self, oldest: str, newest: str) -> list[AccountRecord]:
        with self._conn() as c:
            rows = c.execute(
                """
SELECT * FROM accounts
WHERE status='active' AND expired_notified=0 AND expired_at BETWEEN ? AND ?
ORDER BY id
""",
                (oldest, newest),
            ).fetchall()
        return [_account_from_row(r) for r in rows]

    def accounts_past_grace(self, cutoff: str) -> list[AccountRecord]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM accounts WHERE status IN ('active','expired') AND expired_at<=? ORDER BY id",
                (cutoff,),
            ).fetchall()
        return [_account_from_row(r) for r in rows]

    def set_flag(self, account_id: int, flag: str) -> None:
        if flag not in FLAG_COLUMNS:
            raise ValueError(f"unknown flag column: {flag}")
        with self._conn() as c:
            c.execute(f"UPDATE accounts SET {flag}=1 WHERE id=?", (account_id,))

    def mark_expired(self, account_id: int) -> None:
        with self._conn() as c:
            c.execute("UPDATE accounts SET status='expired', expired_notified=1 WHERE id=?", (account_id,))

    # active-account index

    def upsert_active(self, username: str, protocol: str) -> None:
        with self._conn() as c:
            c.execute(
                "INSERT OR IGNORE INTO active_accounts(username, protocol) VALUES (?, ?)",
                (username, protocol),
            )

    def remove_active(self, username: str, protocol: str) -> None:
        with self._conn() as c:
            c.execute("DELETE FROM active_accounts WHERE username=? AND protocol=?", (username, protocol))

    def active_exists(self, username: str, protocol: str) -> bool:
        with self._conn() as c:
            row = c.execute(
                "SELECT 1 FROM active_accounts WHERE username=? AND protocol=?", (username, protocol)
            ).fetchone()
        return row is not None
