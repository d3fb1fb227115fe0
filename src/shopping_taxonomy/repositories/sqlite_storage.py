import sqlite3
from typing import List, Optional

from shopping_taxonomy.database.connection import DatabaseManager
from shopping_taxonomy.domain.exceptions import StorageError
from shopping_taxonomy.repositories.base import StorageBackend


class SQLiteStorage(StorageBackend):
    """
    SQLite implementation of the StorageBackend.

    Each key is one row of the kv_store table. SQLite calls are quick and
    local, so they run inline on the event loop.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.db.ensure_schema()

    async def get_item(self, key: str) -> Optional[str]:
        try:
            cursor = self.db.get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Could not read '{key}': {e}") from e

        return row["value"] if row else None

    async def set_item(self, key: str, value: str) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Could not write '{key}': {e}") from e

    def keys(self) -> List[str]:
        """List stored keys (used by the init script for reporting)."""
        cursor = self.db.get_connection().execute("SELECT key FROM kv_store ORDER BY key")
        return [row["key"] for row in cursor.fetchall()]
