# src/stackprobe/database.py
"""Persistence for scan records, subscriptions and change events."""

import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional
import logging

from stackprobe.config import settings
from stackprobe.exceptions import StorageError
from stackprobe.models import ChangeEvent, ChangeSet, ScanRecord, Subscription

logger = logging.getLogger(__name__)

# SQL schema
CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    domain TEXT NOT NULL,
    user_id TEXT,
    scanned_at TIMESTAMP NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scans_domain ON scans (domain, scanned_at);
CREATE INDEX IF NOT EXISTS idx_scans_user ON scans (user_id, scanned_at);

CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    user_id TEXT,
    url TEXT NOT NULL,
    domain TEXT NOT NULL,
    notify_on_change INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_scanned_at TIMESTAMP,
    last_scan_id TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS change_events (
    id TEXT PRIMARY KEY,
    subscription_id TEXT NOT NULL,
    old_scan_id TEXT,
    new_scan_id TEXT NOT NULL,
    change_type TEXT NOT NULL,
    change_summary TEXT NOT NULL,
    changes TEXT NOT NULL,
    notification_sent INTEGER NOT NULL DEFAULT 0,
    notification_sent_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);
"""

SUBSCRIPTION_COLUMNS = {
    "user_id", "url", "domain", "notify_on_change", "is_active", "last_scanned_at", "last_scan_id",
}


def _new_id() -> str:
    return uuid.uuid4().hex


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AbstractScanStore(ABC):
    """Abstract base class defining the persistence interface.

    Every method may raise StorageError; callers surface it rather than retry.
    """

    @abstractmethod
    def close(self) -> None:
        """Close the store."""
        pass

    # --- Scan records ---

    @abstractmethod
    def create_scan_record(self, record: ScanRecord) -> ScanRecord:
        """Persist a new record and return it with its assigned id."""
        pass

    @abstractmethod
    def get_scan_record(self, scan_id: str) -> Optional[ScanRecord]:
        pass

    @abstractmethod
    def get_latest_scan_record_by_domain(
        self, domain: str, exclude_id: Optional[str] = None
    ) -> Optional[ScanRecord]:
        """Most recent record for a domain, optionally skipping one id."""
        pass

    @abstractmethod
    def update_scan_record(self, scan_id: str, partial: Mapping[str, Any]) -> Optional[ScanRecord]:
        """Apply a partial update (ScanRecord attribute names). Last writer wins.

        Returns:
            The updated record, or None when no record has that id
        """
        pass

    @abstractmethod
    def list_scans_for_user(self, user_id: str, limit: int = 20) -> List[ScanRecord]:
        pass

    @abstractmethod
    def list_recent_scans(self, limit: int = 20) -> List[ScanRecord]:
        pass

    # --- Subscriptions ---

    @abstractmethod
    def create_subscription(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    def list_subscriptions(self, active_only: bool = True) -> List[Subscription]:
        pass

    @abstractmethod
    def update_subscription(self, subscription_id: str, **fields: Any) -> Optional[Subscription]:
        pass

    # --- Change events ---

    @abstractmethod
    def create_change_event(self, event: ChangeEvent) -> ChangeEvent:
        pass

    @abstractmethod
    def mark_change_notified(self, event_id: str, sent_at: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    def list_change_events(self, subscription_id: Optional[str] = None, limit: int = 50) -> List[ChangeEvent]:
        pass


class LocalSqliteStore(AbstractScanStore):
    """SQLite implementation. Scan records are stored as their JSON shape."""

    def __init__(self, db_url: Optional[str] = None):
        """Initialize the SQLite store.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db). Defaults to settings.DATABASE_URL.
        """
        self.db_url = db_url or settings.DATABASE_URL
        self.db_path = self.db_url.replace("sqlite:///", "")
        self.conn: Optional[sqlite3.Connection] = None
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to local SQLite database: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed local SQLite connection")

    def create_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._guard("create schema"):
            with self.conn:
                self.conn.executescript(CREATE_TABLES_SQL)
        logger.debug("Schema verified/created for local SQLite")

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        if self.conn is None:
            raise StorageError(f"Cannot {operation}: database connection is closed")
        try:
            yield
        except sqlite3.Error as e:
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(f"Failed to {operation}: {e}", details={"operation": operation}) from e

    # --- Scan records ---

    def _write_record(self, record: ScanRecord, insert: bool) -> None:
        data = json.dumps(record.to_dict())
        if insert:
            sql = "INSERT INTO scans (id, url, domain, user_id, scanned_at, data) VALUES (?, ?, ?, ?, ?, ?)"
            params = (record.id, record.url, record.domain, record.user_id, _iso(record.scanned_at), data)
        else:
            sql = "UPDATE scans SET url = ?, domain = ?, user_id = ?, scanned_at = ?, data = ? WHERE id = ?"
            params = (record.url, record.domain, record.user_id, _iso(record.scanned_at), data, record.id)
        with self.conn:
            self.conn.execute(sql, params)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ScanRecord:
        record = ScanRecord.from_dict(json.loads(row["data"]))
        record.id = row["id"]
        return record

    def create_scan_record(self, record: ScanRecord) -> ScanRecord:
        record.validate()
        stored = replace(record, id=record.id or _new_id())
        with self._guard("create scan record"):
            self._write_record(stored, insert=True)
        logger.debug(f"Created scan record {stored.id} for {stored.domain}")
        return stored

    def get_scan_record(self, scan_id: str) -> Optional[ScanRecord]:
        with self._guard("get scan record"):
            row = self.conn.execute("SELECT * FROM scans WHERE id = ?", (scan_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def get_latest_scan_record_by_domain(
        self, domain: str, exclude_id: Optional[str] = None
    ) -> Optional[ScanRecord]:
        sql = "SELECT * FROM scans WHERE domain = ?"
        params: List[Any] = [domain]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY scanned_at DESC, rowid DESC LIMIT 1"
        with self._guard("get latest scan record"):
            row = self.conn.execute(sql, params).fetchone()
        return self._row_to_record(row) if row else None

    def update_scan_record(self, scan_id: str, partial: Mapping[str, Any]) -> Optional[ScanRecord]:
        current = self.get_scan_record(scan_id)
        if current is None:
            return None
        updated = replace(current, **dict(partial))
        updated.id = scan_id
        updated.validate()
        with self._guard("update scan record"):
            self._write_record(updated, insert=False)
        return updated

    def list_scans_for_user(self, user_id: str, limit: int = 20) -> List[ScanRecord]:
        with self._guard("list scans for user"):
            rows = self.conn.execute(
                "SELECT * FROM scans WHERE user_id = ? ORDER BY scanned_at DESC, rowid DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_recent_scans(self, limit: int = 20) -> List[ScanRecord]:
        with self._guard("list recent scans"):
            rows = self.conn.execute(
                "SELECT * FROM scans ORDER BY scanned_at DESC, rowid DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    # --- Subscriptions ---

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            url=row["url"],
            domain=row["domain"],
            notify_on_change=bool(row["notify_on_change"]),
            is_active=bool(row["is_active"]),
            last_scanned_at=datetime.fromisoformat(row["last_scanned_at"]) if row["last_scanned_at"] else None,
            last_scan_id=row["last_scan_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def create_subscription(self, subscription: Subscription) -> Subscription:
        stored = replace(subscription, id=subscription.id or _new_id())
        with self._guard("create subscription"):
            with self.conn:
                self.conn.execute(
                    "INSERT INTO subscriptions (id, user_id, url, domain, notify_on_change, is_active, "
                    "last_scanned_at, last_scan_id, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        stored.id, stored.user_id, stored.url, stored.domain,
                        int(stored.notify_on_change), int(stored.is_active),
                        _iso(stored.last_scanned_at), stored.last_scan_id, _iso(stored.created_at),
                    ),
                )
        return stored

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        with self._guard("get subscription"):
            row = self.conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)).fetchone()
        return self._row_to_subscription(row) if row else None

    def list_subscriptions(self, active_only: bool = True) -> List[Subscription]:
        sql = "SELECT * FROM subscriptions"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY created_at ASC"
        with self._guard("list subscriptions"):
            rows = self.conn.execute(sql).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def update_subscription(self, subscription_id: str, **fields: Any) -> Optional[Subscription]:
        unknown = set(fields) - SUBSCRIPTION_COLUMNS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
        if fields:
            values = []
            for name, value in fields.items():
                if isinstance(value, datetime):
                    value = value.isoformat()
                elif isinstance(value, bool):
                    value = int(value)
                values.append(value)
            assignments = ", ".join(f"{name} = ?" for name in fields)
            with self._guard("update subscription"):
                with self.conn:
                    self.conn.execute(
                        f"UPDATE subscriptions SET {assignments} WHERE id = ?",
                        (*values, subscription_id),
                    )
        return self.get_subscription(subscription_id)

    # --- Change events ---

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> ChangeEvent:
        return ChangeEvent(
            id=row["id"],
            subscription_id=row["subscription_id"],
            old_scan_id=row["old_scan_id"],
            new_scan_id=row["new_scan_id"],
            change_type=row["change_type"],
            change_summary=row["change_summary"],
            changes=ChangeSet.from_dict(json.loads(row["changes"])),
            notification_sent=bool(row["notification_sent"]),
            notification_sent_at=(
                datetime.fromisoformat(row["notification_sent_at"]) if row["notification_sent_at"] else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def create_change_event(self, event: ChangeEvent) -> ChangeEvent:
        stored = replace(event, id=event.id or _new_id())
        with self._guard("create change event"):
            with self.conn:
                self.conn.execute(
                    "INSERT INTO change_events (id, subscription_id, old_scan_id, new_scan_id, change_type, "
                    "change_summary, changes, notification_sent, notification_sent_at, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        stored.id, stored.subscription_id, stored.old_scan_id, stored.new_scan_id,
                        stored.change_type, stored.change_summary, json.dumps(stored.changes.to_dict()),
                        int(stored.notification_sent), _iso(stored.notification_sent_at),
                        _iso(stored.created_at),
                    ),
                )
        return stored

    def mark_change_notified(self, event_id: str, sent_at: Optional[datetime] = None) -> None:
        with self._guard("mark change notified"):
            with self.conn:
                self.conn.execute(
                    "UPDATE change_events SET notification_sent = 1, notification_sent_at = ? WHERE id = ?",
                    (_iso(sent_at or datetime.now()), event_id),
                )

    def list_change_events(self, subscription_id: Optional[str] = None, limit: int = 50) -> List[ChangeEvent]:
        sql = "SELECT * FROM change_events"
        params: List[Any] = []
        if subscription_id:
            sql += " WHERE subscription_id = ?"
            params.append(subscription_id)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with self._guard("list change events"):
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_event(row) for row in rows]


def get_db_client(
    backend: Optional[str] = None,
    **kwargs,
) -> AbstractScanStore:
    """Factory function to create the appropriate store.

    Args:
        backend: 'local' (SQLite file) or 'memory' (SQLite in memory). Defaults to settings.DB_BACKEND.
        **kwargs: Additional arguments passed to the store constructor.

    Raises:
        ValueError: If an unknown backend is specified.
    """
    backend = backend or settings.DB_BACKEND

    if backend == "local":
        logger.info("Using local SQLite database backend")
        return LocalSqliteStore(**kwargs)
    elif backend == "memory":
        logger.info("Using in-memory SQLite database backend")
        return LocalSqliteStore(db_url="sqlite:///:memory:")
    else:
        raise ValueError(
            f"Unknown database backend: '{backend}'. "
            "Supported backends: 'local', 'memory'"
        )
