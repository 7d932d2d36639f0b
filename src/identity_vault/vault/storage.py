# Raw Key-Value Store
#
# Unencrypted string store used only to remember which vault belongs to
# this device (the "vault-id" entry). The vault contents themselves live
# in the encrypted backend.
#
# Two implementations:
#   - MemoryKeyValueStore: per-process, for tests and embedding
#   - SQLiteKeyValueStore: durable across sessions (WAL sqlite, upsert)

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from ..core.db import transaction

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal string key-value interface."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-memory KeyValueStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SQLiteKeyValueStore:
    """SQLite-backed KeyValueStore.

    Args:
        db_path: Path to SQLite file. Parent directories are created.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._init_database()

    def _init_database(self):
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS raw_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def get(self, key: str) -> Optional[str]:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM raw_store WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        """Upsert a value."""
        now = datetime.utcnow().isoformat()
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT INTO raw_store (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                (key, value, now),
            )

    def remove(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        with transaction(self.db_path) as conn:
            removed = conn.execute(
                "DELETE FROM raw_store WHERE key = ?", (key,)
            ).rowcount
        if removed:
            logger.debug("Removed raw store key %s", key)
