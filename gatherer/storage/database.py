"""SQLite database connection and schema management."""

import aiosqlite
import asyncio
import sqlite3
from datetime import datetime
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, AsyncIterator
import json
import logging

from ..errors import StorageError

logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

# SQL schema for processes, steps and artifacts (version 1)
SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS processes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cloud_id TEXT,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_processes_updated_at ON processes(updated_at DESC);

CREATE TABLE IF NOT EXISTS steps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    process_id INTEGER NOT NULL,
    key TEXT NOT NULL,
    position INTEGER NOT NULL,
    who TEXT NOT NULL DEFAULT '',
    action TEXT NOT NULL DEFAULT '',
    tools TEXT NOT NULL DEFAULT '[]',
    details TEXT NOT NULL DEFAULT '',
    frequency TEXT NOT NULL DEFAULT '',
    outcome TEXT NOT NULL DEFAULT '',
    duration TEXT NOT NULL DEFAULT '',
    is_end INTEGER NOT NULL DEFAULT 0,
    next_type TEXT NOT NULL DEFAULT 'end',
    next_ref TEXT,
    UNIQUE (process_id, key),
    FOREIGN KEY (process_id) REFERENCES processes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_steps_process_id ON steps(process_id, position);

CREATE TABLE IF NOT EXISTS artifacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    process_id INTEGER NOT NULL,
    step_id INTEGER NOT NULL,
    kind TEXT NOT NULL,
    name TEXT NOT NULL,
    mime_type TEXT NOT NULL DEFAULT 'application/octet-stream',
    size INTEGER NOT NULL DEFAULT 0,
    content BLOB,
    created_at TEXT NOT NULL,
    FOREIGN KEY (process_id) REFERENCES processes(id) ON DELETE CASCADE,
    FOREIGN KEY (step_id) REFERENCES steps(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_artifacts_process_id ON artifacts(process_id);
CREATE INDEX IF NOT EXISTS idx_artifacts_step_id ON artifacts(step_id);
"""

# Scripts that bring the schema from version n-1 to version n
MIGRATIONS: dict[int, str] = {
    1: SCHEMA_V1,
}


class Database:
    """
    Async SQLite database connection manager.

    Owns the single connection, the schema version and the transaction lock.
    Create one per application and pass it to the stores.
    """

    def __init__(self, db_path: Path | str = "gatherer.db"):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._tx_lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Establish database connection and bring the schema up to date."""
        if self._connection is not None:
            return

        # Ensure directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Connecting to database: {self.db_path}")
        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode, transactions are explicit
        )

        # Enable foreign keys
        await self._connection.execute("PRAGMA foreign_keys = ON")

        # Enable WAL mode for better concurrency
        await self._connection.execute("PRAGMA journal_mode = WAL")

        await self._migrate()

        logger.info("Database connected and schema initialized")

    async def _migrate(self) -> None:
        """Run every migration between the stored and the current schema version."""
        current = await self.schema_version()
        if current > SCHEMA_VERSION:
            raise StorageError(
                f"Database schema version {current} is newer than supported ({SCHEMA_VERSION})"
            )

        for version in range(current + 1, SCHEMA_VERSION + 1):
            logger.info(f"Migrating database schema to version {version}")
            async with self._connection.executescript(MIGRATIONS[version]):
                pass
            await self._connection.execute(f"PRAGMA user_version = {version}")

    async def schema_version(self) -> int:
        """Read the schema version stored in the database file."""
        async with self.connection.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the current connection (raises if not connected)."""
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def in_transaction(self) -> bool:
        """Check if the current task holds the transaction."""
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def _outside_others(self) -> AsyncIterator[None]:
        """
        Wait until no other task has a transaction open.

        All tasks share one connection, so a statement issued while another
        task's transaction is open would see (or join) its uncommitted work.
        The transaction owner itself passes straight through.
        """
        if self.in_transaction:
            yield
            return
        async with self._tx_lock:
            yield

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        async with self._outside_others():
            return await self.connection.execute(sql, params)

    async def execute_many(self, sql: str, params_list: list[tuple]) -> None:
        """Execute a SQL statement with multiple parameter sets."""
        async with self._outside_others():
            await self.connection.executemany(sql, params_list)

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Fetch a single row as a dictionary."""
        async with self._outside_others():
            self.connection.row_factory = aiosqlite.Row
            async with self.connection.execute(sql, params) as cursor:
                row = await cursor.fetchone()
                if row:
                    return dict(row)
                return None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Fetch all rows as dictionaries."""
        async with self._outside_others():
            self.connection.row_factory = aiosqlite.Row
            async with self.connection.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """
        Run a block of statements atomically.

        Transactions are serialized across tasks. A task that is already
        inside a transaction joins it instead of opening a new one, so store
        methods can be composed into larger atomic operations. Statements
        from other tasks wait until the transaction has committed or rolled
        back.

        Usage:
            async with db.transaction():
                await db.execute("DELETE FROM artifacts WHERE process_id = ?", (pid,))
                await db.execute("DELETE FROM processes WHERE id = ?", (pid,))

        Raises:
            StorageError: If SQLite rejected a statement (after rollback)
        """
        if self.in_transaction:
            yield self
            return

        async with self._tx_lock:
            self._tx_owner = asyncio.current_task()
            try:
                await self.begin_transaction()
                try:
                    yield self
                except sqlite3.Error as e:
                    await self.rollback()
                    raise StorageError(f"Transaction rolled back: {e}") from e
                except BaseException:
                    await self.rollback()
                    raise
                try:
                    await self.commit()
                except sqlite3.Error as e:
                    await self.rollback()
                    raise StorageError(f"Commit failed: {e}") from e
            finally:
                self._tx_owner = None

    async def begin_transaction(self) -> None:
        """Begin an explicit transaction."""
        await self.connection.execute("BEGIN IMMEDIATE")

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self.connection.execute("COMMIT")

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        await self.connection.execute("ROLLBACK")


# Utility functions for JSON serialization in SQLite

def serialize_json(data) -> str:
    """Serialize data to JSON string for storage."""
    return json.dumps(data, default=str)


def deserialize_json(data: Optional[str], default=None):
    """Deserialize JSON string from storage."""
    if data is None:
        return default
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return default


def parse_datetime(val):
    """Parse an ISO timestamp column (None stays None)."""
    if val:
        return datetime.fromisoformat(val)
    return None
