"""SQLite-backed store for sessions, turn logs and durable memories.

Every statement touches rows keyed by the owning user and a record id, so
turns running concurrently in different sessions never contend on the same
row.
"""

import json
import uuid
from typing import Any

import aiosqlite
import structlog

from bookkeeping_agent.memory.connection import AsyncSQLiteConnection, run_migrations
from bookkeeping_agent.memory.models import (
    AuditLogEntry,
    Clock,
    ConversationSession,
    MemoryCategory,
    MemoryRecord,
    SessionStatus,
    Turn,
    UserContext,
    from_db_timestamp,
    to_db_timestamp,
    utcnow,
)

logger = structlog.get_logger(__name__)

TITLE_MAX_LENGTH = 255

# Upper bound on candidates considered when building the context block
_CONTEXT_CANDIDATES = 200

_SECTION_HEADERS = {
    MemoryCategory.PREFERENCE: "LEARNED PREFERENCES",
    MemoryCategory.FACT: "KNOWN FACTS",
    MemoryCategory.INSTRUCTION: "USER INSTRUCTIONS",
}

_BUSINESS_FIELDS = [
    ("company_name", "Company"),
    ("default_currency", "Default Currency"),
    ("fiscal_year_end", "Fiscal Year End"),
    ("industry", "Industry"),
    ("invoice_prefix", "Invoice Prefix"),
    ("quotation_prefix", "Quotation Prefix"),
]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MemoryStore:
    """Persistent storage for conversation sessions and long-term memory."""

    def __init__(
        self,
        connection: AsyncSQLiteConnection,
        context_max_chars: int = 4000,
        clock: Clock = utcnow,
    ):
        self._conn = connection
        self.context_max_chars = context_max_chars
        self._clock = clock

    @property
    def connection(self) -> AsyncSQLiteConnection:
        return self._conn

    async def init_db(self) -> None:
        """Create the schema if it doesn't exist."""
        await run_migrations(self._conn)

    def _now(self) -> str:
        return to_db_timestamp(self._clock()) or ""

    # === Sessions ===

    async def get_or_create_session(
        self, user_id: str, session_id: str | None = None
    ) -> ConversationSession:
        """Return the user's session with this id, or create a new one.

        An unknown id, or one owned by a different user, yields a new session.
        Reusing an archived session makes it active again.
        """
        now = self._now()
        async with self._conn.acquire() as conn:
            if session_id:
                rows = await conn.execute_fetchall(
                    """SELECT * FROM sessions
                       WHERE id = ? AND user_id = ? AND status != ?""",
                    (session_id, user_id, SessionStatus.DELETED.value),
                )
                if rows:
                    await conn.execute(
                        """UPDATE sessions SET last_activity_at = ?, status = ?
                           WHERE id = ? AND user_id = ?""",
                        (now, SessionStatus.ACTIVE.value, session_id, user_id),
                    )
                    session = self._row_to_session(rows[0])
                    session.status = SessionStatus.ACTIVE
                    session.last_activity_at = from_db_timestamp(now)
                    return session

            new_id = str(uuid.uuid4())
            await conn.execute(
                """INSERT INTO sessions (id, user_id, title, status, created_at, last_activity_at)
                   VALUES (?, ?, NULL, ?, ?, ?)""",
                (new_id, user_id, SessionStatus.ACTIVE.value, now, now),
            )

        logger.info("session_created", session_id=new_id, user_id=user_id)
        return ConversationSession(
            id=new_id,
            user_id=user_id,
            created_at=from_db_timestamp(now),
            last_activity_at=from_db_timestamp(now),
        )

    async def get_session(self, user_id: str, session_id: str) -> ConversationSession | None:
        """Get a session with its turn log."""
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                "SELECT * FROM sessions WHERE id = ? AND user_id = ?",
                (session_id, user_id),
            )
        if not rows:
            return None
        session = self._row_to_session(rows[0])
        session.turns = await self.get_session_turns(session_id)
        return session

    async def save_turn(self, session_id: str, role: str, content: str) -> Turn:
        """Append a turn and refresh the session's last activity."""
        now = self._now()
        async with self._conn.acquire() as conn:
            cursor = await conn.execute(
                """INSERT INTO turns (session_id, role, content, created_at)
                   VALUES (?, ?, ?, ?)""",
                (session_id, role, content, now),
            )
            await conn.execute(
                "UPDATE sessions SET last_activity_at = ? WHERE id = ?",
                (now, session_id),
            )
            turn_id = cursor.lastrowid
        return Turn(
            session_id=session_id,
            role=role,
            content=content,
            created_at=from_db_timestamp(now),
            id=turn_id,
        )

    async def update_session_title(
        self, session_id: str, title: str, *, keep_existing: bool = False
    ) -> None:
        """Set the session title; with keep_existing, only an untitled session changes."""
        query = "UPDATE sessions SET title = ? WHERE id = ?"
        if keep_existing:
            query += " AND (title IS NULL OR title = '')"
        async with self._conn.acquire() as conn:
            await conn.execute(query, (title[:TITLE_MAX_LENGTH], session_id))

    async def get_session_turns(self, session_id: str) -> list[Turn]:
        """Get the turn log of a session in append order."""
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                "SELECT * FROM turns WHERE session_id = ? ORDER BY id",
                (session_id,),
            )
        return [
            Turn(
                session_id=row["session_id"],
                role=row["role"],
                content=row["content"],
                created_at=from_db_timestamp(row["created_at"]),
                id=row["id"],
            )
            for row in rows
        ]

    async def get_recent_sessions(
        self, user_id: str, limit: int = 20
    ) -> list[ConversationSession]:
        """Get the user's non-deleted sessions, most recently active first."""
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                """SELECT * FROM sessions
                   WHERE user_id = ? AND status != ?
                   ORDER BY last_activity_at DESC
                   LIMIT ?""",
                (user_id, SessionStatus.DELETED.value, limit),
            )
        return [self._row_to_session(row) for row in rows]

    # === Long-term memory ===

    async def store_memory(self, user_id: str, record: MemoryRecord) -> MemoryRecord:
        """Insert a memory, or update the active record with the same key."""
        now = self._now()
        expires_at = to_db_timestamp(record.expires_at)
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                """SELECT id FROM memories
                   WHERE user_id = ? AND key = ? AND is_active = 1""",
                (user_id, record.key),
            )
            if rows:
                memory_id = rows[0]["id"]
                await conn.execute(
                    """UPDATE memories
                       SET category = ?, value = ?, confidence = ?, expires_at = ?,
                           source_type = ?, source_session_id = ?, updated_at = ?
                       WHERE id = ? AND user_id = ?""",
                    (
                        record.category.value,
                        record.value,
                        record.confidence,
                        expires_at,
                        record.source_type.value,
                        record.source_session_id,
                        now,
                        memory_id,
                        user_id,
                    ),
                )
                action = "memory_updated"
            else:
                memory_id = str(uuid.uuid4())
                await conn.execute(
                    """INSERT INTO memories
                       (id, user_id, category, key, value, confidence, expires_at,
                        last_used_at, use_count, is_active, source_type,
                        source_session_id, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 0, 1, ?, ?, ?, ?)""",
                    (
                        memory_id,
                        user_id,
                        record.category.value,
                        record.key,
                        record.value,
                        record.confidence,
                        expires_at,
                        record.source_type.value,
                        record.source_session_id,
                        now,
                        now,
                    ),
                )
                action = "memory_created"

            stored = await conn.execute_fetchall(
                "SELECT * FROM memories WHERE id = ?", (memory_id,)
            )

        logger.info(action, user_id=user_id, key=record.key, category=record.category.value)
        return self._row_to_memory(stored[0])

    async def search_memories(
        self, user_id: str, query: str, limit: int = 5
    ) -> list[MemoryRecord]:
        """Find active, unexpired memories matching every keyword of the query.

        Each whitespace-separated keyword must appear in the key or the value,
        case-insensitively. Results are ordered by confidence, then recency.
        """
        now = self._now()
        clauses = [
            "user_id = ?",
            "is_active = 1",
            "(expires_at IS NULL OR expires_at > ?)",
        ]
        params: list[Any] = [user_id, now]
        for keyword in query.lower().split():
            pattern = f"%{_escape_like(keyword)}%"
            clauses.append(
                "(LOWER(key) LIKE ? ESCAPE '\\' OR LOWER(value) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        params.append(limit)

        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                f"""SELECT * FROM memories
                    WHERE {" AND ".join(clauses)}
                    ORDER BY confidence DESC, COALESCE(last_used_at, updated_at) DESC
                    LIMIT ?""",
                params,
            )
            records = [self._row_to_memory(row) for row in rows]
            await self._mark_used(conn, user_id, records, now)

        return records

    async def build_context(self, user_id: str) -> str:
        """Build the memory block injected into the model's instructions.

        The block holds the business context followed by learned preferences,
        known facts and user instructions, most recently used first, and never
        exceeds ``context_max_chars``. Records that make it into the block have
        their usage refreshed.
        """
        now = self._now()
        user_context = await self.get_user_context(user_id)

        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                """SELECT * FROM memories
                   WHERE user_id = ? AND is_active = 1
                     AND (expires_at IS NULL OR expires_at > ?)
                   ORDER BY COALESCE(last_used_at, '') DESC, updated_at DESC
                   LIMIT ?""",
                (user_id, now, _CONTEXT_CANDIDATES),
            )
            candidates = [self._row_to_memory(row) for row in rows]

            business = self._business_lines(user_context)
            included: list[MemoryRecord] = []
            for record in candidates:
                rendered = self._render_context(business, included + [record])
                if len(rendered) <= self.context_max_chars:
                    included.append(record)

            await self._mark_used(conn, user_id, included, now)

        context = self._render_context(business, included)
        return context[: self.context_max_chars]

    async def _mark_used(
        self,
        conn: aiosqlite.Connection,
        user_id: str,
        records: list[MemoryRecord],
        now: str,
    ) -> None:
        for record in records:
            await conn.execute(
                """UPDATE memories SET last_used_at = ?, use_count = use_count + 1
                   WHERE id = ? AND user_id = ?""",
                (now, record.id, user_id),
            )
            record.last_used_at = from_db_timestamp(now)
            record.use_count += 1

    @staticmethod
    def _business_lines(user_context: UserContext | None) -> list[str]:
        if user_context is None:
            return []
        return [
            f"{label}: {getattr(user_context, attr)}"
            for attr, label in _BUSINESS_FIELDS
            if getattr(user_context, attr)
        ]

    @staticmethod
    def _render_context(business: list[str], records: list[MemoryRecord]) -> str:
        parts: list[str] = []
        if business:
            parts.append("BUSINESS CONTEXT:\n" + "\n".join(business))

        for category, header in _SECTION_HEADERS.items():
            lines = []
            for record in records:
                if record.category != category:
                    continue
                if category == MemoryCategory.INSTRUCTION:
                    lines.append(f"- {record.value}")
                else:
                    lines.append(f"- {record.key}: {record.value}")
            if lines:
                parts.append(f"{header}:\n" + "\n".join(lines))

        return "\n\n".join(parts)

    # === User context ===

    async def get_user_context(self, user_id: str) -> UserContext | None:
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                "SELECT * FROM user_context WHERE user_id = ?", (user_id,)
            )
        if not rows:
            return None
        row = rows[0]
        return UserContext(
            user_id=row["user_id"],
            company_name=row["company_name"],
            default_currency=row["default_currency"],
            fiscal_year_end=row["fiscal_year_end"],
            industry=row["industry"],
            invoice_prefix=row["invoice_prefix"],
            quotation_prefix=row["quotation_prefix"],
            updated_at=from_db_timestamp(row["updated_at"]),
        )

    async def upsert_user_context(self, user_id: str, **updates: Any) -> UserContext:
        """Update the given business-context fields, creating the row if needed.

        Fields passed as None are left unchanged.
        """
        allowed = {attr for attr, _ in _BUSINESS_FIELDS}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown user context fields: {sorted(unknown)}")

        current = await self.get_user_context(user_id) or UserContext(user_id=user_id)
        for attr, value in updates.items():
            if value is not None:
                setattr(current, attr, value)

        now = self._now()
        async with self._conn.acquire() as conn:
            await conn.execute(
                """INSERT INTO user_context
                   (user_id, company_name, default_currency, fiscal_year_end,
                    industry, invoice_prefix, quotation_prefix, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       company_name = excluded.company_name,
                       default_currency = excluded.default_currency,
                       fiscal_year_end = excluded.fiscal_year_end,
                       industry = excluded.industry,
                       invoice_prefix = excluded.invoice_prefix,
                       quotation_prefix = excluded.quotation_prefix,
                       updated_at = excluded.updated_at""",
                (
                    user_id,
                    current.company_name,
                    current.default_currency,
                    current.fiscal_year_end,
                    current.industry,
                    current.invoice_prefix,
                    current.quotation_prefix,
                    now,
                ),
            )
        current.updated_at = from_db_timestamp(now)
        return current

    # === Audit ===

    async def log_audit(self, entry: AuditLogEntry) -> None:
        """Append an agent audit log entry."""
        now = self._now()
        impact = json.dumps(entry.financial_impact) if entry.financial_impact else None
        async with self._conn.acquire() as conn:
            cursor = await conn.execute(
                """INSERT INTO audit_logs
                   (user_id, session_id, action, resource_type, success,
                    error_message, financial_impact, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.user_id,
                    entry.session_id,
                    entry.action,
                    entry.resource_type,
                    int(entry.success),
                    entry.error_message,
                    impact,
                    now,
                ),
            )
            entry.id = cursor.lastrowid
        entry.created_at = from_db_timestamp(now)

    async def get_audit_logs(self, user_id: str, limit: int = 50) -> list[AuditLogEntry]:
        async with self._conn.acquire() as conn:
            rows = await conn.execute_fetchall(
                """SELECT * FROM audit_logs WHERE user_id = ?
                   ORDER BY id DESC LIMIT ?""",
                (user_id, limit),
            )
        return [
            AuditLogEntry(
                id=row["id"],
                user_id=row["user_id"],
                session_id=row["session_id"],
                action=row["action"],
                resource_type=row["resource_type"],
                success=bool(row["success"]),
                error_message=row["error_message"],
                financial_impact=(
                    json.loads(row["financial_impact"]) if row["financial_impact"] else None
                ),
                created_at=from_db_timestamp(row["created_at"]),
            )
            for row in rows
        ]

    # === Row mapping ===

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> ConversationSession:
        return ConversationSession(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            status=SessionStatus(row["status"]),
            created_at=from_db_timestamp(row["created_at"]),
            last_activity_at=from_db_timestamp(row["last_activity_at"]),
        )

    @staticmethod
    def _row_to_memory(row: aiosqlite.Row) -> MemoryRecord:
        return MemoryRecord(
            id=row["id"],
            user_id=row["user_id"],
            category=MemoryCategory(row["category"]),
            key=row["key"],
            value=row["value"],
            confidence=row["confidence"],
            expires_at=from_db_timestamp(row["expires_at"]),
            last_used_at=from_db_timestamp(row["last_used_at"]),
            use_count=row["use_count"],
            is_active=bool(row["is_active"]),
            source_type=row["source_type"],
            source_session_id=row["source_session_id"],
            created_at=from_db_timestamp(row["created_at"]),
            updated_at=from_db_timestamp(row["updated_at"]),
        )
