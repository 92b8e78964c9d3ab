"""Local state management for the sync client.

This module provides:
- LocalSyncState: SQLite-based local state
  - Key/value sync state (last_sync_at, device_id)
  - Device identity (current_id, regenerate_id)
  - Sync history (newest history_limit records, stored as JSON)

LocalSyncState satisfies the coordinator's LastSyncStore, DeviceIdentity
and SyncHistory protocols.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from tabsync.client.device import generate_device_id
from tabsync.client.sync.types import Clock, SyncOperationRecord, now_ms
from tabsync.core.config import DEFAULT_HISTORY_LIMIT

logger = logging.getLogger(__name__)


class LocalSyncState:
    """SQLite-based local state for the sync client."""

    def __init__(
        self,
        db_path: Path,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Clock | None = None,
    ) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
            history_limit: Number of sync records to keep.
            clock: Millisecond clock used for new device ids.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._history_limit = history_limit
        self._clock = clock or now_ms

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            -- One row per sync pass
            CREATE TABLE IF NOT EXISTS sync_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sync_id TEXT UNIQUE NOT NULL,
                start_time INTEGER NOT NULL,
                status TEXT,
                record TEXT NOT NULL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # === Sync state operations ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM sync_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_last_sync_at(self) -> int | None:
        """Get time of last successful sync (epoch ms)."""
        value = self.get_state("last_sync_at")
        return int(value) if value else None

    def set_last_sync_at(self, timestamp: int) -> None:
        """Set time of last successful sync (epoch ms)."""
        self.set_state("last_sync_at", str(timestamp))

    # === Device identity ===

    def current_id(self) -> str:
        """Get this device's id, creating it on first use."""
        with self._lock:
            device_id = self.get_state("device_id")
            if device_id is None:
                device_id = generate_device_id(self._clock)
                self.set_state("device_id", device_id)
                logger.info("Created device id %s", device_id)
            return device_id

    def regenerate_id(self) -> str:
        """Replace this device's id with a new one."""
        with self._lock:
            old_id = self.get_state("device_id")
            device_id = generate_device_id(self._clock)
            self.set_state("device_id", device_id)
        logger.info("Regenerated device id %s -> %s", old_id, device_id)
        return device_id

    # === Sync history ===

    def record(self, record: SyncOperationRecord) -> None:
        """Store a sync record, dropping the oldest beyond history_limit."""
        payload = json.dumps(record.to_dict())
        status = record.status.value if record.status else None
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO sync_history (sync_id, start_time, status, record)
                VALUES (?, ?, ?, ?)
                """,
                (record.sync_id, record.start_time, status, payload),
            )
            self._conn.execute(
                """
                DELETE FROM sync_history WHERE id NOT IN (
                    SELECT id FROM sync_history ORDER BY id DESC LIMIT ?
                )
                """,
                (self._history_limit,),
            )

    def list_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """List sync records, newest first.

        Args:
            limit: Maximum number of records (default: all kept records).

        Returns:
            Records as produced by SyncOperationRecord.to_dict().
        """
        with self._lock:
            cursor = self._conn.execute(
                "SELECT record FROM sync_history ORDER BY id DESC LIMIT ?",
                (limit if limit is not None else -1,),
            )
            rows = cursor.fetchall()
        return [json.loads(row["record"]) for row in rows]

    def clear_history(self) -> int:
        """Delete all sync records.

        Returns:
            Number of records deleted.
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM sync_history")
        return cursor.rowcount

    def get_statistics(self) -> dict[str, Any]:
        """Summarize the kept sync history."""
        records = self.list_history()
        completed = [r for r in records if r.get("status") == "completed"]
        failed = [r for r in records if r.get("status") == "failed"]
        durations = [r["duration"] for r in records if r.get("duration") is not None]
        return {
            "total": len(records),
            "completed": len(completed),
            "failed": len(failed),
            "conflicts": sum(len(r.get("conflicts", [])) for r in records),
            "average_duration": sum(durations) / len(durations) if durations else 0,
            "last_sync_at": self.get_last_sync_at(),
        }
