"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Set test environment variables before importing settings
os.environ.setdefault("BOOKKEEPING_API_KEY", "bk-test-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from bookkeeping_agent.ledger.guard import BalancedEntryGuard  # noqa: E402
from bookkeeping_agent.memory import AsyncSQLiteConnection, MemoryStore  # noqa: E402
from bookkeeping_agent.tools.registry import ToolContext  # noqa: E402

USER_ID = "11111111-1111-1111-1111-111111111111"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def clock():
    """Clock fixed at 2025-06-15 09:00 UTC."""
    return FakeClock(datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def chart_of_accounts():
    """A typical small-business chart of accounts."""
    return [
        {"id": "acc-cash", "code": "1100", "name": "Cash", "account_type": "asset"},
        {"id": "acc-bank", "code": "1110", "name": "Bank - Maybank", "account_type": "asset"},
        {"id": "acc-ar", "code": "1200", "name": "Accounts Receivable", "account_type": "asset"},
        {"id": "acc-ap", "code": "2100", "name": "Accounts Payable", "account_type": "liability"},
        {"id": "acc-sales", "code": "4100", "name": "Sales Revenue", "account_type": "revenue"},
        {"id": "acc-office", "code": "6100", "name": "Office Expenses", "account_type": "expense"},
        {"id": "acc-rent", "code": "6300", "name": "Rent Expense", "account_type": "expense"},
    ]


@pytest.fixture
def mock_backend(chart_of_accounts):
    """Mock bookkeeping backend client."""
    backend = AsyncMock()
    backend.find_all_accounts = AsyncMock(return_value=chart_of_accounts)
    backend.create_journal_entry = AsyncMock(
        return_value={"id": "je-1", "entry_number": "JE-0001", "status": "draft"}
    )
    backend.post_journal_entry = AsyncMock(return_value={"id": "je-1", "status": "posted"})
    backend.close = AsyncMock()
    return backend


@pytest.fixture
def mock_audit():
    audit = AsyncMock()
    audit.log_audit = AsyncMock()
    return audit


@pytest.fixture
def guard(mock_backend, mock_audit):
    return BalancedEntryGuard(mock_backend, audit=mock_audit, currency="MYR")


@pytest_asyncio.fixture
async def memory_store(tmp_path, clock):
    """Memory store on a fresh SQLite file."""
    store = MemoryStore(
        AsyncSQLiteConnection(str(tmp_path / "agent.db")),
        context_max_chars=4000,
        clock=clock,
    )
    await store.init_db()
    return store


@pytest.fixture
def tool_context(user_id, mock_backend, guard, clock):
    return ToolContext(
        user_id=user_id,
        backend=mock_backend,
        guard=guard,
        session_id="session-1",
        currency="MYR",
        clock=clock,
    )


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client
