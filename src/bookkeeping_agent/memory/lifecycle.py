"""Periodic cleanup of memories, sessions and the agent audit log.

Each policy is a single conditional bulk statement keyed on timestamps and
status, so a sweep is idempotent and safe to run alongside live turns.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from bookkeeping_agent.config import FlatSettings, get_settings
from bookkeeping_agent.memory.connection import AsyncSQLiteConnection
from bookkeeping_agent.memory.models import (
    Clock,
    MemoryCategory,
    SessionStatus,
    to_db_timestamp,
    utcnow,
)

logger = structlog.get_logger(__name__)

RECENT_MEMORY_DAYS = 30


@dataclass(frozen=True)
class CleanupConfig:
    """Retention thresholds for a cleanup run."""

    unused_memory_days: int = 180
    low_confidence_threshold: float = 0.3
    low_confidence_age_days: int = 90
    inactive_session_days: int = 30
    archived_session_retention_days: int = 365
    agent_audit_log_retention_days: int = 365

    @classmethod
    def from_settings(cls, settings: FlatSettings | None = None) -> "CleanupConfig":
        settings = settings or get_settings()
        return cls(
            unused_memory_days=settings.unused_memory_days,
            low_confidence_threshold=settings.low_confidence_threshold,
            low_confidence_age_days=settings.low_confidence_age_days,
            inactive_session_days=settings.inactive_session_days,
            archived_session_retention_days=settings.archived_session_retention_days,
            agent_audit_log_retention_days=settings.agent_audit_log_retention_days,
        )


@dataclass
class CleanupResult:
    """Counts reported by one cleanup run."""

    expired_memories: int = 0
    unused_memories: int = 0
    low_confidence_memories: int = 0
    archived_sessions: int = 0
    deleted_sessions: int = 0
    deleted_audit_logs: int = 0
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def total_cleaned(self) -> int:
        return (
            self.expired_memories
            + self.unused_memories
            + self.low_confidence_memories
            + self.archived_sessions
            + self.deleted_sessions
            + self.deleted_audit_logs
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "expired_memories": self.expired_memories,
            "unused_memories": self.unused_memories,
            "low_confidence_memories": self.low_confidence_memories,
            "archived_sessions": self.archived_sessions,
            "deleted_sessions": self.deleted_sessions,
            "deleted_audit_logs": self.deleted_audit_logs,
            "total_cleaned": self.total_cleaned,
            "duration_ms": round(self.duration_ms, 2),
            "errors": list(self.errors),
        }


class MemoryLifecycleManager:
    """Expires, prunes and archives memory state outside of any turn."""

    def __init__(self, connection: AsyncSQLiteConnection, clock: Clock = utcnow):
        self._conn = connection
        self._clock = clock

    def _cutoff(self, days: int) -> str:
        return to_db_timestamp(self._clock() - timedelta(days=days)) or ""

    async def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        async with self._conn.acquire() as conn:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount

    async def run_cleanup(self, config: CleanupConfig | None = None) -> CleanupResult:
        """Run every policy, isolating failures so one cannot block another."""
        config = config or CleanupConfig()
        result = CleanupResult()
        started = time.monotonic()

        policies = [
            ("expired_memories", self.clean_expired_memories, ()),
            ("unused_memories", self.clean_unused_memories, (config.unused_memory_days,)),
            (
                "low_confidence_memories",
                self.clean_low_confidence_memories,
                (config.low_confidence_threshold, config.low_confidence_age_days),
            ),
            (
                "archived_sessions",
                self.archive_inactive_sessions,
                (config.inactive_session_days,),
            ),
            (
                "deleted_sessions",
                self.delete_archived_sessions,
                (config.archived_session_retention_days,),
            ),
            (
                "deleted_audit_logs",
                self.clean_old_audit_logs,
                (config.agent_audit_log_retention_days,),
            ),
        ]

        for name, policy, args in policies:
            try:
                setattr(result, name, await policy(*args))
            except Exception as e:
                logger.exception("cleanup_policy_failed", policy=name)
                result.errors.append(f"{name}: {e}")

        result.duration_ms = (time.monotonic() - started) * 1000
        logger.info("cleanup_completed", **result.to_dict())
        return result

    # === Policies ===

    async def clean_expired_memories(self) -> int:
        """Delete memories whose expiry has passed."""
        now = to_db_timestamp(self._clock())
        count = await self._execute(
            "DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (now,),
        )
        if count:
            logger.info("expired_memories_cleaned", count=count)
        return count

    async def clean_unused_memories(self, days_threshold: int) -> int:
        """Delete memories never used since creation, or not used recently."""
        cutoff = self._cutoff(days_threshold)
        count = await self._execute(
            """DELETE FROM memories
               WHERE (last_used_at IS NULL AND created_at <= ?)
                  OR (last_used_at IS NOT NULL AND last_used_at <= ?)""",
            (cutoff, cutoff),
        )
        if count:
            logger.info("unused_memories_cleaned", count=count, days_threshold=days_threshold)
        return count

    async def clean_low_confidence_memories(
        self, confidence_threshold: float, min_age_days: int
    ) -> int:
        """Delete low-confidence memories that have had time to be confirmed."""
        cutoff = self._cutoff(min_age_days)
        count = await self._execute(
            "DELETE FROM memories WHERE confidence < ? AND created_at <= ?",
            (confidence_threshold, cutoff),
        )
        if count:
            logger.info(
                "low_confidence_memories_cleaned",
                count=count,
                confidence_threshold=confidence_threshold,
            )
        return count

    async def archive_inactive_sessions(self, inactive_days: int) -> int:
        """Archive active sessions with no recent activity."""
        cutoff = self._cutoff(inactive_days)
        count = await self._execute(
            "UPDATE sessions SET status = ? WHERE status = ? AND last_activity_at <= ?",
            (SessionStatus.ARCHIVED.value, SessionStatus.ACTIVE.value, cutoff),
        )
        if count:
            logger.info("sessions_archived", count=count, inactive_days=inactive_days)
        return count

    async def delete_archived_sessions(self, retention_days: int) -> int:
        """Delete archived sessions past retention, together with their turns."""
        cutoff = self._cutoff(retention_days)
        count = await self._execute(
            "DELETE FROM sessions WHERE status = ? AND created_at <= ?",
            (SessionStatus.ARCHIVED.value, cutoff),
        )
        if count:
            logger.info("archived_sessions_deleted", count=count, retention_days=retention_days)
        return count

    async def clean_old_audit_logs(self, retention_days: int) -> int:
        """Trim audit entries past retention."""
        cutoff = self._cutoff(retention_days)
        count = await self._execute(
            "DELETE FROM audit_logs WHERE created_at <= ?", (cutoff,)
        )
        if count:
            logger.info("audit_logs_cleaned", count=count, retention_days=retention_days)
        return count

    # === User-initiated ===

    async def deactivate_user_memories(
        self,
        user_id: str,
        category: MemoryCategory | str | None = None,
        older_than: datetime | None = None,
    ) -> int:
        """Soft-delete a user's memories, optionally by category or age."""
        clauses = ["user_id = ?", "is_active = 1"]
        params: list[Any] = [user_id]
        if category is not None:
            clauses.append("category = ?")
            params.append(MemoryCategory(category).value)
        if older_than is not None:
            clauses.append("created_at < ?")
            params.append(to_db_timestamp(older_than))

        count = await self._execute(
            f"UPDATE memories SET is_active = 0, updated_at = ? WHERE {' AND '.join(clauses)}",
            (to_db_timestamp(self._clock()), *params),
        )
        logger.info("user_memories_deactivated", user_id=user_id, count=count)
        return count

    async def purge_deactivated_memories(self, user_id: str) -> int:
        """Hard-delete a user's deactivated memories."""
        count = await self._execute(
            "DELETE FROM memories WHERE user_id = ? AND is_active = 0", (user_id,)
        )
        logger.info("deactivated_memories_purged", user_id=user_id, count=count)
        return count

    async def get_stats(self, config: CleanupConfig | None = None) -> dict[str, Any]:
        """Count memories and sessions by status, without modifying anything.

        The unused and low-confidence counts use the same thresholds as the
        cleanup policies in ``config``.
        """
        config = config or CleanupConfig()
        now = to_db_timestamp(self._clock())
        unused_cutoff = self._cutoff(config.unused_memory_days)
        recent_cutoff = self._cutoff(RECENT_MEMORY_DAYS)
        async with self._conn.acquire() as conn:
            memory_rows = await conn.execute_fetchall(
                """SELECT
                       COUNT(*) AS total,
                       COALESCE(SUM(is_active = 1), 0) AS active,
                       COALESCE(SUM(expires_at IS NOT NULL AND expires_at <= ?), 0) AS expired,
                       COALESCE(SUM(COALESCE(last_used_at, created_at) <= ?), 0) AS unused,
                       COALESCE(SUM(confidence < ?), 0) AS low_confidence,
                       COALESCE(SUM(created_at >= ?), 0) AS recent
                   FROM memories""",
                (now, unused_cutoff, config.low_confidence_threshold, recent_cutoff),
            )
            session_rows = await conn.execute_fetchall(
                "SELECT status, COUNT(*) AS count FROM sessions GROUP BY status"
            )
            audit_rows = await conn.execute_fetchall("SELECT COUNT(*) AS count FROM audit_logs")

        memories = memory_rows[0]
        by_status = {row["status"]: row["count"] for row in session_rows}
        return {
            "memories": {
                "total": memories["total"],
                "active": memories["active"],
                "expired": memories["expired"],
                "unused": memories["unused"],
                "low_confidence": memories["low_confidence"],
                "recent": memories["recent"],
            },
            "sessions": {
                "total": sum(by_status.values()),
                "active": by_status.get(SessionStatus.ACTIVE.value, 0),
                "archived": by_status.get(SessionStatus.ARCHIVED.value, 0),
            },
            "audit_logs": audit_rows[0]["count"],
        }
