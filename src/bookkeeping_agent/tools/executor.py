"""Tool executor that guards every LLM tool call.

Calls are validated against the tool's input model, bounded by a timeout
and a per-turn call budget, and their results capped by family. Every
failure comes back as an ``{"error", "error_type"}`` payload so the agent
loop can keep going.
"""

import asyncio
import time
from typing import Any

import pydantic
import structlog

from bookkeeping_agent.clients.bookkeeping_api import BookkeepingAPIError
from bookkeeping_agent.config import AgentLimits
from bookkeeping_agent.errors import (
    AgentError,
    LimitError,
    ToolTimeoutError,
    UpstreamError,
    ValidationError,
)
from bookkeeping_agent.memory.models import AuditLogEntry
from bookkeeping_agent.tools.registry import ToolContext, ToolRegistry, ToolSpec

logger = structlog.get_logger(__name__)


def apply_result_cap(result: dict[str, Any], cap: int | None) -> dict[str, Any]:
    """Truncate list-valued fields to the cap, recording the original size."""
    if cap is None:
        return result

    capped = dict(result)
    for key, value in result.items():
        if isinstance(value, list) and len(value) > cap:
            capped[key] = value[:cap]
            capped["truncated"] = True
            capped["total"] = len(value)
            if "count" in capped:
                capped["count"] = cap
    return capped


def _format_validation_errors(error: pydantic.ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
        for err in error.errors()
    ]


class ToolExecutor:
    """Executes tool calls for one turn within its resource limits."""

    def __init__(
        self,
        registry: ToolRegistry,
        context: ToolContext,
        limits: AgentLimits | None = None,
    ):
        self.registry = registry
        self.context = context
        self.limits = limits or AgentLimits()
        self.calls_made = 0
        self._logger = logger.bind(user_id=context.user_id, session_id=context.session_id)

    @property
    def calls_remaining(self) -> int:
        return max(self.limits.max_tool_calls_per_request - self.calls_made, 0)

    async def execute(self, tool_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Execute a tool call and return a success or error payload."""
        log = self._logger.bind(tool=tool_name)

        if self.calls_made >= self.limits.max_tool_calls_per_request:
            log.warning("tool_call_budget_exhausted", calls_made=self.calls_made)
            return LimitError(
                f"Tool call limit of {self.limits.max_tool_calls_per_request} per request "
                "reached. Answer with the information gathered so far."
            ).to_payload()
        self.calls_made += 1

        spec = self.registry.get(tool_name)
        if spec is None:
            log.warning("unknown_tool")
            return ValidationError(f"Unknown tool: {tool_name}").to_payload()

        try:
            args = spec.input_model.model_validate(arguments or {})
        except pydantic.ValidationError as e:
            log.info("tool_input_invalid", errors=e.error_count())
            return ValidationError(
                f"Invalid input for {tool_name}", details=_format_validation_errors(e)
            ).to_payload()

        log.info("executing_tool", args=arguments)
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                spec.handler(self.context, args),
                timeout=self.limits.tool_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("tool_timeout", timeout=self.limits.tool_timeout_seconds)
            return ToolTimeoutError(
                f"{tool_name} did not finish within {self.limits.tool_timeout_seconds:g}s"
            ).to_payload()
        except AgentError as e:
            log.info("tool_rejected", error_type=e.error_type, error=e.message)
            await self._audit(spec, success=False, error=e.message)
            return e.to_payload()
        except BookkeepingAPIError as e:
            log.warning("tool_api_error", status=e.status_code, details=e.details)
            await self._audit(spec, success=False, error=str(e))
            return UpstreamError(str(e), details=e.details).to_payload()
        except Exception as e:
            log.exception("tool_execution_error")
            return {"error": f"{tool_name} failed: {e}", "error_type": "InternalError"}

        duration_ms = (time.monotonic() - started) * 1000
        log.info("tool_executed", success=True, duration_ms=round(duration_ms, 1))
        await self._audit(spec, success=True)
        return {
            "success": True,
            "result": apply_result_cap(result, self.limits.cap_for(spec.result_family)),
        }

    async def _audit(self, spec: ToolSpec, success: bool, error: str | None = None) -> None:
        """Audit writes that do not post to the ledger; the guard audits postings."""
        if spec.audit_resource is None or self.context.memory is None:
            return
        try:
            await self.context.memory.log_audit(
                AuditLogEntry(
                    user_id=self.context.user_id,
                    session_id=self.context.session_id or None,
                    action=spec.name,
                    resource_type=spec.audit_resource,
                    success=success,
                    error_message=error,
                )
            )
        except Exception:
            self._logger.exception("audit_log_failed", tool=spec.name)
