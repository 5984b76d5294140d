"""Conversation sessions, durable memory and their lifecycle."""

from bookkeeping_agent.memory.connection import AsyncSQLiteConnection, run_migrations
from bookkeeping_agent.memory.lifecycle import (
    CleanupConfig,
    CleanupResult,
    MemoryLifecycleManager,
)
from bookkeeping_agent.memory.models import (
    AuditLogEntry,
    ConversationSession,
    MemoryCategory,
    MemoryRecord,
    MemorySource,
    SessionStatus,
    Turn,
    UserContext,
)
from bookkeeping_agent.memory.store import MemoryStore

__all__ = [
    "AsyncSQLiteConnection",
    "AuditLogEntry",
    "CleanupConfig",
    "CleanupResult",
    "ConversationSession",
    "MemoryCategory",
    "MemoryLifecycleManager",
    "MemoryRecord",
    "MemorySource",
    "MemoryStore",
    "SessionStatus",
    "Turn",
    "UserContext",
    "run_migrations",
]
