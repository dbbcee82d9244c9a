"""
Durable local registry of leased instances, backed by sqlite.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Union

from .errors import LeaseConflictError, LeaseNotFoundError, LocalStoreError
from .timefmt import parse_timestamp, utcnow

__all__ = [
    "Lease",
    "LeaseRegistry",
    "PENDING_IP",
]

PENDING_IP = "IP-Allocating"

_DDL = """
CREATE TABLE IF NOT EXISTS leases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider_id INTEGER NOT NULL UNIQUE,
    alias TEXT NOT NULL UNIQUE,
    server_name TEXT NOT NULL DEFAULT '',
    ip TEXT NOT NULL DEFAULT '',
    region TEXT NOT NULL DEFAULT '',
    tier TEXT NOT NULL DEFAULT '',
    ssh_key_path TEXT NOT NULL DEFAULT '',
    owner_wallet TEXT NOT NULL DEFAULT '',
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""
_INDEXES = (
    "CREATE INDEX IF NOT EXISTS leases_owner_wallet ON leases(owner_wallet)",
    "CREATE INDEX IF NOT EXISTS leases_expires_at ON leases(expires_at)",
)
_COLUMNS = (
    "provider_id",
    "alias",
    "server_name",
    "ip",
    "region",
    "tier",
    "ssh_key_path",
    "owner_wallet",
    "expires_at",
    "created_at",
)
_MUTABLE = frozenset(_COLUMNS) - {"provider_id", "created_at"}


def _stored_timestamp(value: datetime, name: str) -> str:
    # fixed-width UTC text so ORDER BY sorts chronologically
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"Lease {name} must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class Lease:
    provider_id: int
    alias: str
    expires_at: datetime
    server_name: str = ""
    ip: str = PENDING_IP
    region: str = ""
    tier: str = ""
    ssh_key_path: str = ""
    owner_wallet: str = ""
    created_at: datetime = field(default_factory=utcnow)

    @property
    def ip_pending(self) -> bool:
        return not self.ip or self.ip == PENDING_IP

    def as_row(self) -> tuple:
        return (
            self.provider_id,
            self.alias,
            self.server_name,
            self.ip,
            self.region,
            self.tier,
            self.ssh_key_path,
            self.owner_wallet,
            _stored_timestamp(self.expires_at, "expires_at"),
            _stored_timestamp(self.created_at, "created_at"),
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Lease":
        return cls(
            provider_id=int(row["provider_id"]),
            alias=row["alias"],
            server_name=row["server_name"],
            ip=row["ip"],
            region=row["region"],
            tier=row["tier"],
            ssh_key_path=row["ssh_key_path"],
            owner_wallet=row["owner_wallet"],
            expires_at=parse_timestamp(row["expires_at"]),
            created_at=parse_timestamp(row["created_at"]),
        )


class LeaseRegistry:
    """
    Create, look up, update and delete leases by alias or provider id.

    Each call opens its own connection so worker threads can use the same
    registry; writes are serialized with a lock.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._initialize()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Cannot open lease registry at {self.path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise LeaseConflictError(f"Lease already recorded: {exc}") from exc
        except sqlite3.Error as exc:
            raise LocalStoreError(f"Lease registry error: {exc}") from exc
        finally:
            conn.close()

    def _initialize(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LocalStoreError(f"Cannot create {self.path.parent}: {exc}") from exc
        with self._lock, self._connect() as conn:
            conn.execute(_DDL)
            for ddl in _INDEXES:
                conn.execute(ddl)

    def create(self, lease: Lease) -> Lease:
        placeholders = ",".join("?" for _ in _COLUMNS)
        row = lease.as_row()
        with self._lock, self._connect() as conn:
            conn.execute(
                f"INSERT INTO leases ({','.join(_COLUMNS)}) VALUES ({placeholders})",
                row,
            )
        logging.debug("Recorded lease %s (provider id %d)", lease.alias, lease.provider_id)
        return lease

    def _select(self, conn: sqlite3.Connection, key: Union[str, int]) -> sqlite3.Row:
        row = None
        if isinstance(key, str):
            row = conn.execute("SELECT * FROM leases WHERE alias = ?", (key,)).fetchone()
        if row is None:
            try:
                provider_id = int(key)
            except (TypeError, ValueError):
                provider_id = None
            if provider_id is not None:
                row = conn.execute(
                    "SELECT * FROM leases WHERE provider_id = ?", (provider_id,)
                ).fetchone()
        if row is None:
            raise LeaseNotFoundError(f"Lease [{key}] not found in local registry")
        return row

    def find(self, key: Union[str, int]) -> Lease:
        """Look a lease up by alias first, then by provider id."""
        with self._connect() as conn:
            return Lease.from_row(self._select(conn, key))

    def list_all(self) -> List[Lease]:
        """All leases, latest expiry first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM leases ORDER BY expires_at DESC, provider_id DESC"
            ).fetchall()
        return [Lease.from_row(row) for row in rows]

    def update(self, key: Union[str, int], **fields: Any) -> Lease:
        """
        Overwrite only the named fields of one lease and return the result.
        """
        unknown = set(fields) - _MUTABLE
        if unknown:
            raise ValueError(f"Cannot update lease fields: {', '.join(sorted(unknown))}")
        if not fields:
            return self.find(key)

        with self._lock, self._connect() as conn:
            current = Lease.from_row(self._select(conn, key))
            updated = replace(current, **fields)
            assignments = ", ".join(f"{name} = ?" for name in fields)
            values = [
                _stored_timestamp(getattr(updated, name), name)
                if isinstance(getattr(updated, name), datetime)
                else getattr(updated, name)
                for name in fields
            ]
            conn.execute(
                f"UPDATE leases SET {assignments} WHERE provider_id = ?",
                (*values, current.provider_id),
            )
        return updated

    def delete(self, lease: Lease) -> None:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM leases WHERE provider_id = ?", (lease.provider_id,)
            )
            if cursor.rowcount == 0:
                raise LeaseNotFoundError(f"Lease [{lease.alias}] not found in local registry")
        logging.debug("Removed lease %s from registry", lease.alias)
