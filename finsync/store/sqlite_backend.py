"""
SQLite local store backend.

DESIGN DECISION: The client mirror must survive a restart, including
records created offline and the operations queued for them. SQLite
gives us that in a single file with no server.

Documents are stored as JSON text; the store deserializes them into
models. Every write commits immediately.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from finsync.store.interface import BackendError, LocalStoreBackend


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS records (
    entity_type TEXT NOT NULL,
    id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (entity_type, id)
);

CREATE INDEX IF NOT EXISTS idx_records_owner ON records (owner_id);

CREATE TABLE IF NOT EXISTS sync_queue (
    operation_id TEXT PRIMARY KEY,
    sequence INTEGER NOT NULL,
    data TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_queue_sequence ON sync_queue (sequence);

CREATE TABLE IF NOT EXISTS sync_metadata (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
"""

METADATA_KEY = "main"


class SQLiteBackend(LocalStoreBackend):
    """Durable backend for the local mirror, queue and metadata."""

    def __init__(self, db_path: Union[str, Path]):
        """Open (or create) the database at db_path."""
        self.db_path = Path(db_path)
        try:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            # WAL keeps readers unblocked while a write commits
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.executescript(SCHEMA_SQL)
            self.conn.commit()
        except sqlite3.Error as e:
            raise BackendError(f"Failed to open local database {self.db_path}: {e}")

    @contextmanager
    def _write(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn:
                yield self.conn
        except sqlite3.Error as e:
            raise BackendError(f"Failed to {action}: {e}")

    def _read(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise BackendError(f"Failed to read local database: {e}")

    def load_records(self, entity_type: str) -> list[str]:
        rows = self._read("SELECT data FROM records WHERE entity_type = ?", (entity_type,))
        return [row["data"] for row in rows]

    def save_record(self, entity_type: str, record_id: str, owner_id: str, data: str) -> None:
        with self._write("save record") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO records (entity_type, id, owner_id, data) "
                "VALUES (?, ?, ?, ?)",
                (entity_type, record_id, owner_id, data),
            )

    def delete_record(self, entity_type: str, record_id: str) -> None:
        with self._write("delete record") as conn:
            conn.execute(
                "DELETE FROM records WHERE entity_type = ? AND id = ?",
                (entity_type, record_id),
            )

    def clear_records(self) -> None:
        with self._write("clear records") as conn:
            conn.execute("DELETE FROM records")

    def load_operations(self) -> list[str]:
        rows = self._read("SELECT data FROM sync_queue ORDER BY sequence ASC")
        return [row["data"] for row in rows]

    def save_operation(self, operation_id: str, sequence: int, data: str) -> None:
        with self._write("save queued operation") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_queue (operation_id, sequence, data) "
                "VALUES (?, ?, ?)",
                (operation_id, sequence, data),
            )

    def delete_operation(self, operation_id: str) -> None:
        with self._write("delete queued operation") as conn:
            conn.execute("DELETE FROM sync_queue WHERE operation_id = ?", (operation_id,))

    def clear_operations(self) -> None:
        with self._write("clear queue") as conn:
            conn.execute("DELETE FROM sync_queue")

    def load_metadata(self) -> Optional[str]:
        rows = self._read("SELECT data FROM sync_metadata WHERE id = ?", (METADATA_KEY,))
        return rows[0]["data"] if rows else None

    def save_metadata(self, data: str) -> None:
        with self._write("save sync metadata") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_metadata (id, data) VALUES (?, ?)",
                (METADATA_KEY, data),
            )

    def clear_metadata(self) -> None:
        with self._write("clear sync metadata") as conn:
            conn.execute("DELETE FROM sync_metadata")

    def close(self) -> None:
        self.conn.close()
