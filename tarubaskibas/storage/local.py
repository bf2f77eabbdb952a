"""On-device storage: a sqlite key-value store holding JSON documents."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..errors import InvalidItemError
from ..models import InventoryItem, UserProfile, sort_by_expiry
from .base import InventoryCallback, StorageBackend, Unsubscribe
from .channel import SubscriberChannel

logger = logging.getLogger(__name__)

INVENTORY_KEY = "tarubaskibas_inventory"
PROFILE_KEY = "tarubaskibas_profile"

_SCHEMA_VERSION = 1

_DDL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now', 'localtime'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);
"""

_ID_ALPHABET = string.ascii_lowercase + string.digits


def ensure_schema(db_path: str | Path) -> sqlite3.Connection:
    """Open (or create) the database and ensure the schema is up to date.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection with the schema applied.
    """
    if str(db_path) == ":memory:":
        conn = sqlite3.connect(":memory:")
    else:
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row

    try:
        row = conn.execute("SELECT version FROM schema_version").fetchone()
        current_version = row["version"] if row else 0
    except sqlite3.OperationalError:
        current_version = 0

    if current_version < _SCHEMA_VERSION:
        conn.executescript(_DDL)
        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        conn.commit()

    return conn


class LocalKeyValueStore:
    """Synchronous string key-value store backed by sqlite."""

    def __init__(self, db_path: str | Path = "~/.config/tarubaskibas/local.db") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get(self, key: str) -> str | None:
        row = self._get_conn().execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO kv_store (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE
               SET value = excluded.value,
                   updated_at = datetime('now', 'localtime')""",
            (key, value),
        )
        conn.commit()

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        rows = self._get_conn().execute(
            "SELECT key FROM kv_store WHERE key LIKE ? ORDER BY key",
            (prefix + "%",),
        ).fetchall()
        return [r["key"] for r in rows]


def new_local_id() -> str:
    """Timestamp plus a random base36 suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"local-{int(time.time() * 1000)}{suffix}"


class LocalBackend(StorageBackend):
    """Inventory and profile persistence in the local key-value store.

    Every mutation re-broadcasts the user's full sorted collection to all
    of that user's subscribers.
    """

    def __init__(self, store: LocalKeyValueStore) -> None:
        self._store = store
        self._channel = SubscriberChannel()

    @property
    def store(self) -> LocalKeyValueStore:
        return self._store

    def _inventory_key(self, user_id: str) -> str:
        return f"{INVENTORY_KEY}/{user_id}"

    def _profile_key(self, user_id: str) -> str:
        return f"{PROFILE_KEY}/{user_id}"

    def _read_records(self, user_id: str) -> list[dict[str, Any]]:
        raw = self._store.get(self._inventory_key(user_id))
        if not raw:
            return []
        records = json.loads(raw)
        if not isinstance(records, list):
            raise InvalidItemError(f"Stored inventory for {user_id} is not a list")
        return records

    def _write_records(self, user_id: str, records: list[dict[str, Any]]) -> None:
        self._store.set(self._inventory_key(user_id), json.dumps(records, ensure_ascii=False))

    def read_items(self, user_id: str) -> list[InventoryItem]:
        """Return the user's items sorted by expiry, skipping corrupt records."""
        items: list[InventoryItem] = []
        for record in self._read_records(user_id):
            try:
                items.append(InventoryItem.from_dict(record))
            except (InvalidItemError, TypeError, ValueError):
                logger.warning("Skipping unreadable local record: %r", record)
        return sort_by_expiry(items)

    def _broadcast(self, user_id: str) -> None:
        self._channel.publish(user_id, self.read_items(user_id))

    def subscribe_inventory(
        self,
        user_id: str,
        callback: InventoryCallback,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        items = self.read_items(user_id)
        unsubscribe = self._channel.subscribe(user_id, callback)
        callback(items)
        return unsubscribe

    async def add_item(self, user_id: str, item: InventoryItem) -> str:
        records = self._read_records(user_id)
        item_id = new_local_id()
        records.append({**item.to_dict(include_id=False), "id": item_id})
        self._write_records(user_id, records)
        self._broadcast(user_id)
        return item_id

    async def update_item(
        self, user_id: str, item_id: str, fields: dict[str, Any]
    ) -> bool:
        records = self._read_records(user_id)
        for index, record in enumerate(records):
            if record.get("id") == item_id:
                records[index] = {**record, **fields}
                break
        else:
            return False
        self._write_records(user_id, records)
        self._broadcast(user_id)
        return True

    async def delete_item(self, user_id: str, item_id: str) -> None:
        records = self._read_records(user_id)
        remaining = [r for r in records if r.get("id") != item_id]
        if len(remaining) != len(records):
            self._write_records(user_id, remaining)
        self._broadcast(user_id)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        raw = self._store.get(self._profile_key(user_id))
        if not raw:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw))
        except (json.JSONDecodeError, AttributeError):
            logger.warning("Stored profile for %s is unreadable", user_id)
            return None

    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        data = {
            **profile.to_dict(),
            "lastUpdate": datetime.now(timezone.utc).isoformat(),
        }
        self._store.set(self._profile_key(user_id), json.dumps(data, ensure_ascii=False))

    def close(self) -> None:
        self._store.close()
