"""Tests for the tool registry and executor."""

import asyncio
import time
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel, Field

from bookkeeping_agent.clients.bookkeeping_api import BookkeepingAPIError
from bookkeeping_agent.config import AgentLimits
from bookkeeping_agent.errors import ResolutionError
from bookkeeping_agent.tools import TOOL_REGISTRY
from bookkeeping_agent.tools.executor import ToolExecutor, apply_result_cap
from bookkeeping_agent.tools.registry import ToolCategory, ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str = Field(min_length=1)
    repeat: int = Field(default=1, ge=1)


class SleepInput(BaseModel):
    seconds: float


async def echo(ctx, args: EchoInput) -> dict[str, Any]:
    return {"items": [args.text] * args.repeat, "count": args.repeat}


async def sleep(ctx, args: SleepInput) -> dict[str, Any]:
    await asyncio.sleep(args.seconds)
    return {"slept": args.seconds}


async def not_found(ctx, args: EchoInput) -> dict[str, Any]:
    raise ResolutionError(f"No customer named {args.text}", role="customer")


async def backend_down(ctx, args: EchoInput) -> dict[str, Any]:
    raise BookkeepingAPIError("API error: 503", status_code=503, details={"retry": True})


async def crash(ctx, args: EchoInput) -> dict[str, Any]:
    raise KeyError("boom")


def _spec(name, handler, model=EchoInput, **kwargs) -> ToolSpec:
    return ToolSpec(
        name=name,
        description=f"{name} tool",
        input_model=model,
        handler=handler,
        category=kwargs.pop("category", ToolCategory.READ),
        **kwargs,
    )


@pytest.fixture
def registry():
    return ToolRegistry.from_specs(
        [
            _spec("echo", echo, result_family="invoices"),
            _spec("sleep", sleep, model=SleepInput),
            _spec("not_found", not_found),
            _spec("backend_down", backend_down),
            _spec("crash", crash),
            _spec("audited", echo, category=ToolCategory.WRITE, audit_resource="customer"),
        ]
    )


@pytest.fixture
def limits():
    return AgentLimits(
        tool_timeout_seconds=0.1,
        max_tool_calls_per_request=4,
        result_caps={"invoices": 3},
    )


@pytest.fixture
def executor(registry, tool_context, limits):
    return ToolExecutor(registry, tool_context, limits)


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_duplicate_names_rejected(self):
        """Test registering a name twice raises."""
        registry = ToolRegistry()
        registry.register(_spec("echo", echo))
        with pytest.raises(ValueError):
            registry.register(_spec("echo", echo))

    def test_catalog_entries_carry_schema(self, registry):
        """Test the catalog exposes name, description and input schema."""
        entry = next(e for e in registry.catalog() if e["name"] == "echo")
        assert entry["description"] == "echo tool"
        assert entry["input_schema"]["type"] == "object"
        assert "text" in entry["input_schema"]["required"]
        assert "title" not in entry["input_schema"]

    def test_full_catalog(self):
        """Test the application catalog covers every tool family."""
        for name in [
            "list_invoices",
            "list_accounts",
            "get_accounting_period_status",
            "record_sales_revenue",
            "create_journal_entry",
            "reverse_journal_entry",
            "remember_preference",
            "think_step",
            "get_unpaid_bills",
            "get_aging_report",
            "mark_invoice_as_paid",
            "create_bill",
            "convert_quotation_to_invoice",
            "validate_action",
        ]:
            assert name in TOOL_REGISTRY
        assert len(TOOL_REGISTRY.by_category(ToolCategory.REASONING)) == 2


class TestApplyResultCap:
    """Tests for result capping."""

    def test_truncates_long_lists(self):
        """Test lists over the cap are cut and flagged."""
        result = apply_result_cap({"items": list(range(10)), "count": 10}, 3)
        assert result["items"] == [0, 1, 2]
        assert result["truncated"] is True
        assert result["total"] == 10
        assert result["count"] == 3

    def test_short_lists_untouched(self):
        """Test lists within the cap are returned unchanged."""
        result = apply_result_cap({"items": [1, 2]}, 3)
        assert result == {"items": [1, 2]}

    def test_no_cap(self):
        """Test a missing cap returns the result as-is."""
        result = {"items": list(range(500))}
        assert apply_result_cap(result, None) is result


class TestToolExecutor:
    """Tests for ToolExecutor."""

    @pytest.mark.asyncio
    async def test_success_payload(self, executor):
        """Test a valid call returns a success payload."""
        result = await executor.execute("echo", {"text": "hi"})
        assert result == {"success": True, "result": {"items": ["hi"], "count": 1}}

    @pytest.mark.asyncio
    async def test_result_is_capped_by_family(self, executor):
        """Test results are capped by the tool's family."""
        result = await executor.execute("echo", {"text": "x", "repeat": 8})
        assert len(result["result"]["items"]) == 3
        assert result["result"]["truncated"] is True
        assert result["result"]["total"] == 8

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        """Test an unknown tool name yields a validation error payload."""
        result = await executor.execute("drop_ledger", {})
        assert result["error_type"] == "ValidationError"
        assert "drop_ledger" in result["error"]

    @pytest.mark.asyncio
    async def test_invalid_input(self, executor):
        """Test input failing its contract names the offending field."""
        result = await executor.execute("echo", {"text": "", "repeat": 0})
        assert result["error_type"] == "ValidationError"
        assert any(detail.startswith("text") for detail in result["details"])
        assert any(detail.startswith("repeat") for detail in result["details"])

    @pytest.mark.asyncio
    async def test_timeout_returns_within_deadline(self, executor):
        """Test a slow tool yields a timeout payload promptly."""
        started = time.monotonic()
        result = await executor.execute("sleep", {"seconds": 5})
        elapsed = time.monotonic() - started

        assert result["error_type"] == "TimeoutError"
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_agent_error_payload(self, executor):
        """Test a tool's own error becomes its payload."""
        result = await executor.execute("not_found", {"text": "Acme"})
        assert result == {"error": "No customer named Acme", "error_type": "ResolutionError"}

    @pytest.mark.asyncio
    async def test_backend_error_is_upstream(self, executor):
        """Test backend failures map to UpstreamError."""
        result = await executor.execute("backend_down", {"text": "x"})
        assert result["error_type"] == "UpstreamError"
        assert result["details"] == {"retry": True}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, executor):
        """Test an unexpected exception does not escape the executor."""
        result = await executor.execute("crash", {"text": "x"})
        assert result["error_type"] == "InternalError"

    @pytest.mark.asyncio
    async def test_call_budget(self, executor):
        """Test calls beyond the budget are refused, counting failed calls."""
        await executor.execute("unknown", {})
        await executor.execute("echo", {"text": ""})
        await executor.execute("echo", {"text": "a"})
        await executor.execute("echo", {"text": "b"})
        assert executor.calls_remaining == 0

        result = await executor.execute("echo", {"text": "c"})
        assert result["error_type"] == "LimitError"
        assert executor.calls_made == 4

    @pytest.mark.asyncio
    async def test_audited_write(self, registry, tool_context, limits):
        """Test writes with an audit resource are logged to memory."""
        tool_context.memory = AsyncMock()
        executor = ToolExecutor(registry, tool_context, limits)

        await executor.execute("audited", {"text": "Acme"})
        await executor.execute("echo", {"text": "Acme"})

        tool_context.memory.log_audit.assert_awaited_once()
        entry = tool_context.memory.log_audit.call_args.args[0]
        assert entry.action == "audited"
        assert entry.resource_type == "customer"
        assert entry.success is True
