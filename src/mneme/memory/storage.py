"""Durable per-chat document storage using SQLite.

Each collaborator owns a namespace ("short_term", "embeddings") and stores
one JSON document per chat. Only the logical schema matters to callers;
this module takes care of the file on disk.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the underlying database cannot be read or written."""


class SQLiteDocumentStore:
    """Key/value store of JSON documents grouped by namespace.

    Example:
        >>> store = SQLiteDocumentStore("data/memory.db")
        >>> await store.initialize()
        >>> await store.put("short_term", "chat-1", {"messages": []})
        >>> await store.get("short_term", "chat-1")
        {'messages': []}
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database (will be created if needed).
                     ":memory:" keeps everything in process.
        """
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create the schema.

        Raises:
            StorageError: If the database cannot be opened
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(self._db_path)
            self._conn.row_factory = sqlite3.Row
            self._create_schema()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open document store at {self._db_path}: {e}") from e

    def _create_schema(self) -> None:
        conn = self._require_conn()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """
        )
        conn.commit()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Document store not initialized. Call initialize() first.")
        return self._conn

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        """Load a document.

        Returns:
            The stored mapping, or None if absent or unreadable.

        Raises:
            StorageError: If the query fails
        """
        conn = self._require_conn()
        try:
            row = conn.execute(
                "SELECT payload FROM documents WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {namespace}/{key}: {e}") from e

        if row is None:
            return None

        try:
            data = json.loads(row["payload"])
        except ValueError as e:
            logger.warning(f"Corrupt document {namespace}/{key}, ignoring it: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Document {namespace}/{key} is not a mapping, ignoring it")
            return None
        return data

    async def put(self, namespace: str, key: str, document: dict[str, Any]) -> None:
        """Insert or replace a document.

        Raises:
            StorageError: If the write fails
        """
        conn = self._require_conn()
        try:
            conn.execute(
                """
                INSERT INTO documents (namespace, key, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key)
                DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
            """,
                (namespace, key, json.dumps(document), datetime.now().timestamp()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {namespace}/{key}: {e}") from e

    async def delete(self, namespace: str, key: str) -> bool:
        """Remove a document. Returns True if one existed."""
        conn = self._require_conn()
        try:
            cursor = conn.execute(
                "DELETE FROM documents WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {namespace}/{key}: {e}") from e
        return cursor.rowcount > 0

    async def keys(self, namespace: str) -> list[str]:
        """List keys in a namespace, most recently updated first."""
        conn = self._require_conn()
        try:
            rows = conn.execute(
                "SELECT key FROM documents WHERE namespace = ? ORDER BY updated_at DESC",
                (namespace,),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list {namespace}: {e}") from e
        return [row["key"] for row in rows]

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def __aenter__(self) -> SQLiteDocumentStore:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
