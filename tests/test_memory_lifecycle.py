"""Tests for memory lifecycle cleanup and the cleanup worker."""

from datetime import timedelta

import pytest

from bookkeeping_agent.memory import (
    AuditLogEntry,
    CleanupConfig,
    MemoryCategory,
    MemoryLifecycleManager,
    MemoryRecord,
    SessionStatus,
)
from bookkeeping_agent.worker import run_cleanup_worker


@pytest.fixture
def manager(memory_store, clock):
    return MemoryLifecycleManager(memory_store.connection, clock=clock)


def _memory(user_id, key, **kwargs):
    return MemoryRecord(
        user_id=user_id, category=MemoryCategory.FACT, key=key, value=f"{key} value", **kwargs
    )


async def _active_keys(store, user_id):
    async with store.connection.acquire() as conn:
        rows = await conn.execute_fetchall(
            "SELECT key FROM memories WHERE user_id = ? ORDER BY key", (user_id,)
        )
    return [row["key"] for row in rows]


class TestCleanupPolicies:
    """Tests for individual cleanup policies."""

    @pytest.mark.asyncio
    async def test_expired_memories_removed(self, memory_store, manager, user_id, clock):
        """Test expired memories are deleted and others kept."""
        await memory_store.store_memory(
            user_id, _memory(user_id, "promo", expires_at=clock() + timedelta(hours=1))
        )
        await memory_store.store_memory(user_id, _memory(user_id, "founded"))
        clock.advance(hours=2)

        assert await manager.clean_expired_memories() == 1
        assert await _active_keys(memory_store, user_id) == ["founded"]

    @pytest.mark.asyncio
    async def test_low_confidence_needs_age(self, memory_store, manager, user_id, clock):
        """Test low-confidence memories are kept until old enough."""
        await memory_store.store_memory(user_id, _memory(user_id, "guess", confidence=0.2))

        clock.advance(days=10)
        assert await manager.clean_low_confidence_memories(0.3, 90) == 0

        clock.advance(days=90)
        assert await manager.clean_low_confidence_memories(0.3, 90) == 1

    @pytest.mark.asyncio
    async def test_confident_memories_kept(self, memory_store, manager, user_id, clock):
        """Test memories at or above the threshold survive."""
        await memory_store.store_memory(user_id, _memory(user_id, "sure", confidence=0.3))
        clock.advance(days=100)
        assert await manager.clean_low_confidence_memories(0.3, 90) == 0

    @pytest.mark.asyncio
    async def test_unused_memories(self, memory_store, manager, user_id, clock):
        """Test memories never or long since used are removed."""
        await memory_store.store_memory(user_id, _memory(user_id, "stale"))
        await memory_store.store_memory(user_id, _memory(user_id, "fresh"))
        clock.advance(days=179)
        await memory_store.search_memories(user_id, "fresh")
        clock.advance(days=2)

        assert await manager.clean_unused_memories(180) == 1
        assert await _active_keys(memory_store, user_id) == ["fresh"]

    @pytest.mark.asyncio
    async def test_sessions_archived_then_deleted(self, memory_store, manager, user_id, clock):
        """Test idle sessions are archived, then deleted with their turns."""
        session = await memory_store.get_or_create_session(user_id)
        await memory_store.save_turn(session.id, "user", "hello")

        clock.advance(days=31)
        assert await manager.archive_inactive_sessions(30) == 1
        archived = await memory_store.get_session(user_id, session.id)
        assert archived.status == SessionStatus.ARCHIVED

        clock.advance(days=365)
        assert await manager.delete_archived_sessions(365) == 1
        assert await memory_store.get_session(user_id, session.id) is None
        assert await memory_store.get_session_turns(session.id) == []

    @pytest.mark.asyncio
    async def test_old_audit_logs(self, memory_store, manager, user_id, clock):
        """Test audit entries past retention are trimmed."""
        await memory_store.log_audit(AuditLogEntry(user_id=user_id, action="create_customer"))
        clock.advance(days=366)
        await memory_store.log_audit(AuditLogEntry(user_id=user_id, action="create_vendor"))

        assert await manager.clean_old_audit_logs(365) == 1
        logs = await memory_store.get_audit_logs(user_id)
        assert [log.action for log in logs] == ["create_vendor"]


class TestRunCleanup:
    """Tests for full cleanup runs."""

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, memory_store, manager, user_id, clock):
        """Test a second run right after the first removes nothing."""
        await memory_store.store_memory(
            user_id, _memory(user_id, "promo", expires_at=clock() + timedelta(days=1))
        )
        await memory_store.store_memory(user_id, _memory(user_id, "guess", confidence=0.1))
        await memory_store.get_or_create_session(user_id)
        clock.advance(days=100)

        first = await manager.run_cleanup(CleanupConfig())
        second = await manager.run_cleanup(CleanupConfig())

        assert first.expired_memories == 1
        assert first.low_confidence_memories == 1
        assert first.archived_sessions == 1
        assert first.errors == []
        assert second.total_cleaned == 0

    @pytest.mark.asyncio
    async def test_policy_failure_is_isolated(self, manager, monkeypatch):
        """Test one failing policy does not stop the rest."""

        async def broken(*args):
            raise RuntimeError("locked")

        monkeypatch.setattr(manager, "clean_unused_memories", broken)

        result = await manager.run_cleanup()

        assert result.errors == ["unused_memories: locked"]
        assert result.to_dict()["total_cleaned"] == 0

    @pytest.mark.asyncio
    async def test_worker_single_sweep(self, memory_store, manager, user_id, clock):
        """Test the worker runs one sweep when asked."""
        await memory_store.store_memory(
            user_id, _memory(user_id, "promo", expires_at=clock() - timedelta(seconds=1))
        )
        result = await run_cleanup_worker(manager, CleanupConfig(), interval_seconds=60, once=True)
        assert result.expired_memories == 1


class TestUserInitiated:
    """Tests for user-initiated memory removal."""

    @pytest.mark.asyncio
    async def test_deactivate_and_purge(self, memory_store, manager, user_id):
        """Test deactivated memories drop out of search and can be purged."""
        await memory_store.store_memory(user_id, _memory(user_id, "founded"))
        await memory_store.store_memory(
            user_id,
            MemoryRecord(
                user_id=user_id,
                category=MemoryCategory.PREFERENCE,
                key="tone",
                value="formal",
            ),
        )

        assert await manager.deactivate_user_memories(user_id, category="fact") == 1
        assert await memory_store.search_memories(user_id, "founded") == []
        assert len(await memory_store.search_memories(user_id, "tone")) == 1

        assert await manager.purge_deactivated_memories(user_id) == 1
        assert await _active_keys(memory_store, user_id) == ["tone"]

    @pytest.mark.asyncio
    async def test_stats(self, memory_store, manager, user_id):
        """Test statistics count memories and sessions."""
        await memory_store.store_memory(user_id, _memory(user_id, "founded"))
        await memory_store.get_or_create_session(user_id)

        stats = await manager.get_stats()

        assert stats["memories"]["total"] == 1
        assert stats["memories"]["active"] == 1
        assert stats["sessions"]["active"] == 1
        assert stats["audit_logs"] == 0

    @pytest.mark.asyncio
    async def test_stats_follow_cleanup_config(self, memory_store, manager, user_id, clock):
        """Test unused and low-confidence counts use the configured thresholds."""
        await memory_store.store_memory(user_id, _memory(user_id, "guess", confidence=0.4))
        clock.advance(days=20)

        default = await manager.get_stats()
        strict = await manager.get_stats(
            CleanupConfig(unused_memory_days=10, low_confidence_threshold=0.5)
        )

        assert default["memories"]["unused"] == 0
        assert default["memories"]["low_confidence"] == 0
        assert strict["memories"]["unused"] == 1
        assert strict["memories"]["low_confidence"] == 1
        assert strict["memories"]["recent"] == 1
