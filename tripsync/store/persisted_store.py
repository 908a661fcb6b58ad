"""Namespaced SQLite key-value store for the event queue and fetch cache."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import StoreError

logger = logging.getLogger(__name__)

STORE_SCHEMA = """
-- One JSON document per (namespace, key); last writer wins
CREATE TABLE IF NOT EXISTS kv_store (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


class PersistedStore:
    """Durable key-value storage with synchronous get/set.

    Values are JSON-serialized. Reads never raise: a missing or unreadable
    value comes back as None. Writes raise StoreError so callers can decide
    whether a durability failure matters to them.
    """

    def __init__(self, db_path: str | Path, namespace: str = "tripsync"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            namespace: Prefix isolating this store's keys from other users
                of the same database.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self.namespace = namespace
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(STORE_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store at {self.db_path}: {e}") from e

        logger.info(f"PersistedStore connected to {self.db_path} (namespace={self.namespace})")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> Any | None:
        """Read a value.

        Args:
            key: Key within this store's namespace.

        Returns:
            The decoded value, or None if absent or unreadable.
        """
        try:
            document = self.read_text(key)
        except StoreError as e:
            logger.warning(f"Store read failed for '{key}': {e}")
            return None

        if document is None:
            return None

        try:
            return json.loads(document)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable value for '{key}': {e}")
            return None

    def read_text(self, key: str) -> str | None:
        """Read the raw stored document for a key.

        Unlike ``get``, a failed read is reported instead of looking like
        a missing key.

        Returns:
            The stored JSON text, or None if the key is absent.

        Raises:
            StoreError: If the database cannot be read.
        """
        conn = self._ensure_connected()
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Read failed for '{key}': {e}") from e

        return row["value"] if row is not None else None

    def set(self, key: str, value: Any) -> None:
        """Write a value, replacing any previous one.

        Args:
            key: Key within this store's namespace.
            value: JSON-serializable value.

        Raises:
            StoreError: If the value cannot be serialized or written.
        """
        try:
            document = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value for '{key}' is not serializable: {e}") from e

        conn = self._ensure_connected()
        try:
            conn.execute(
                """
                INSERT INTO kv_store (namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key)
                DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (self.namespace, key, document, datetime.now().isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Write failed for '{key}': {e}") from e

        logger.debug(f"Stored '{key}' ({len(document)} bytes)")

    def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if a value was removed.
        """
        conn = self._ensure_connected()
        try:
            cursor = conn.execute(
                "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Delete failed for '{key}': {e}") from e
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        """List keys in this namespace, sorted."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT key FROM kv_store WHERE namespace = ? ORDER BY key",
            (self.namespace,),
        )
        return [row["key"] for row in cursor]
