import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

Connection = sqlite3.Connection

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


class DatabaseConfig:
    """Database configuration settings."""

    def __init__(self, db_path: Path | str = "data/taxonomy.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def connection_string(self) -> str:
        """Return the database file path as a string"""
        return str(self.db_path.absolute())


class DatabaseManager:
    """
    Manages the SQLite connection behind the key/value storage.

    One connection per manager, created lazily. Use transaction() for
    writes so a failed statement rolls back.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._connection: Connection | None = None

    def get_connection(self) -> Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(
                self.config.connection_string,
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def ensure_schema(self) -> None:
        """Create the key/value table if it does not exist yet."""
        with self.transaction() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the database connection if open."""
        if self._connection:
            self._connection.close()
            self._connection = None

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        Context manager for database transactions.

        Commits on success, rolls back on exception.
        """
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def __enter__(self) -> "DatabaseManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
