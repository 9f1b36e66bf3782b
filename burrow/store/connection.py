"""SQLite store connection and schema."""
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger


SqliteValue = None | int | float | str | bytes | datetime


class Database:
    """Async SQLite connection with WAL mode and enforced foreign keys.

    Statements run in autocommit mode; use :meth:`transaction` to group
    writes.
    """

    def __init__(self, db_path: Path | str):
        self._db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the connection and apply pragmas.

        Raises:
            RuntimeError: If WAL mode cannot be enabled.
        """
        in_memory = str(self._db_path) == ":memory:"
        if not in_memory:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        target = ":memory:" if in_memory else self._db_path
        self._connection = await aiosqlite.connect(target, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row

        cursor = await self._connection.execute("PRAGMA journal_mode = WAL")
        result = await cursor.fetchone()
        mode = result[0].lower() if result else None
        # In-memory databases report "memory" and cannot use WAL
        if mode != "wal" and not (in_memory and mode == "memory"):
            raise RuntimeError(f"Failed to set WAL journal mode. Got: {mode}")

        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA busy_timeout = 5000")

    async def close(self) -> None:
        if self._connection:
            try:
                await self._connection.close()
            except aiosqlite.Error as e:
                logger.warning("Error closing database connection", error=str(e))
            finally:
                self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        await self.ensure_schema()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the active connection.

        Raises:
            RuntimeError: If not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def execute(self, sql: str, parameters: Sequence[SqliteValue] = ()) -> int:
        """Execute a statement and return the affected row count."""
        cursor = await self.connection.execute(sql, parameters)
        return cursor.rowcount

    async def execute_insert(self, sql: str, parameters: Sequence[SqliteValue] = ()) -> int:
        """Execute an INSERT and return the new rowid."""
        cursor = await self.connection.execute(sql, parameters)
        return cursor.lastrowid if cursor.lastrowid is not None else 0

    async def fetch_one(
        self, sql: str, parameters: Sequence[SqliteValue] = ()
    ) -> aiosqlite.Row | None:
        cursor = await self.connection.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetch_all(
        self, sql: str, parameters: Sequence[SqliteValue] = ()
    ) -> list[aiosqlite.Row]:
        cursor = await self.connection.execute(sql, parameters)
        return list(await cursor.fetchall())

    async def fetch_scalar(self, sql: str, parameters: Sequence[SqliteValue] = ()) -> SqliteValue:
        row = await self.fetch_one(sql, parameters)
        return row[0] if row else None

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        """Write transaction. Commits on success, rolls back on exception."""
        await self.connection.execute("BEGIN IMMEDIATE")
        try:
            yield
            await self.connection.execute("COMMIT")
        except Exception:
            await self.connection.execute("ROLLBACK")
            raise

    async def ensure_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self.execute("""
            CREATE TABLE IF NOT EXISTS sandboxes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                slug TEXT NOT NULL UNIQUE,
                state TEXT NOT NULL DEFAULT 'pending',
                data_json TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        await self.execute("""
            CREATE TABLE IF NOT EXISTS releases (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                slug TEXT NOT NULL UNIQUE,
                environment TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'pending',
                data_json TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        await self.execute("""
            CREATE TABLE IF NOT EXISTS claude_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sandbox_id INTEGER NOT NULL REFERENCES sandboxes(id) ON DELETE CASCADE,
                session_uuid TEXT NOT NULL UNIQUE,
                title TEXT,
                git_diff TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)
        await self.execute("""
            CREATE TABLE IF NOT EXISTS command_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workload_type TEXT NOT NULL,
                workload_id INTEGER NOT NULL,
                session_id INTEGER REFERENCES claude_sessions(id) ON DELETE CASCADE,
                command TEXT NOT NULL,
                kind TEXT NOT NULL DEFAULT 'exec',
                category TEXT,
                tag TEXT,
                exit_code INTEGER,
                started_at TIMESTAMP,
                finished_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL
            )
        """)
        await self.execute("""
            CREATE TABLE IF NOT EXISTS command_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id INTEGER NOT NULL
                    REFERENCES command_executions(id) ON DELETE CASCADE,
                line_number INTEGER NOT NULL,
                stream TEXT NOT NULL DEFAULT 'output',
                content TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)

        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_sandboxes_state ON sandboxes(state)"
        )
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_releases_environment ON releases(environment, state)"
        )
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_workload "
            "ON command_executions(workload_type, workload_id, created_at)"
        )
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_executions_session ON command_executions(session_id)"
        )
        await self.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_logs_execution_line
                ON command_logs(execution_id, line_number)
        """)
