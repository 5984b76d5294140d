"""Async SQLite connection manager and schema for the memory store."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite
import structlog

logger = structlog.get_logger(__name__)

_TABLES = [
    """CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL,
        last_activity_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS turns (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
    )""",
    """CREATE TABLE IF NOT EXISTS memories (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        category TEXT NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        confidence REAL NOT NULL DEFAULT 1.0,
        expires_at TEXT,
        last_used_at TEXT,
        use_count INTEGER NOT NULL DEFAULT 0,
        is_active INTEGER NOT NULL DEFAULT 1,
        source_type TEXT NOT NULL,
        source_session_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS user_context (
        user_id TEXT PRIMARY KEY,
        company_name TEXT,
        default_currency TEXT,
        fiscal_year_end TEXT,
        industry TEXT,
        invoice_prefix TEXT,
        quotation_prefix TEXT,
        updated_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS audit_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        session_id TEXT,
        action TEXT NOT NULL,
        resource_type TEXT,
        success INTEGER NOT NULL,
        error_message TEXT,
        financial_impact TEXT,
        created_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id, last_activity_at)",
    "CREATE INDEX IF NOT EXISTS idx_turns_session ON turns(session_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_memories_user_key ON memories(user_id, key, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_logs(created_at)",
]


class AsyncSQLiteConnection:
    """Async SQLite connection provider with auto-commit/rollback."""

    def __init__(self, db_path: str):
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        return self._db_path

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with foreign keys on.

        Commits on success, rolls back on exception.
        """
        async with aiosqlite.connect(self._db_path) as conn:
            await conn.execute("PRAGMA foreign_keys = ON")
            conn.row_factory = aiosqlite.Row
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                logger.exception("database_transaction_rolled_back", db_path=self._db_path)
                raise


async def run_migrations(connection: AsyncSQLiteConnection) -> None:
    """Create all tables if they don't exist. Safe to call repeatedly."""
    async with connection.acquire() as conn:
        for ddl in _TABLES:
            await conn.execute(ddl)
    logger.info("memory_schema_ready", db_path=connection.db_path)
