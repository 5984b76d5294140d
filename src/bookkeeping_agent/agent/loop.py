"""Agent loop: think, act, observe, within a fixed step budget."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from bookkeeping_agent.agent.prompt import build_system_prompt, format_tool_result
from bookkeeping_agent.clients.base import ModelClient
from bookkeeping_agent.config import AgentLimits
from bookkeeping_agent.errors import ModelProviderError
from bookkeeping_agent.tools.executor import ToolExecutor
from bookkeeping_agent.tools.registry import ToolContext, ToolRegistry

logger = structlog.get_logger(__name__)

MAX_STEPS_NOTICE = (
    "I ran out of steps before finishing this request. "
    "Please narrow it down or ask me to continue."
)
MODEL_ERROR_MESSAGE = (
    "Sorry, I couldn't get a response from the language model. Please try again shortly."
)


class StopReason(str, Enum):
    """Reasons for stopping the agent loop."""

    COMPLETE = "complete"
    MAX_STEPS = "max_steps"
    ERROR = "error"


@dataclass
class ToolInvocation:
    """One executed tool call."""

    step: int
    call_id: str
    name: str
    arguments: dict[str, Any]
    result: dict[str, Any]
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return "error" not in self.result


@dataclass
class StepEvent:
    """Progress notification published while the loop runs."""

    type: str  # "step" or "tool_result"
    step: int
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentResult:
    """Result from running the agent loop."""

    response: str
    stop_reason: StopReason
    steps: int
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=lambda: {"input_tokens": 0, "output_tokens": 0})
    error: str | None = None


StepListener = Callable[[StepEvent], Awaitable[None]]


def truncate_history(messages: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    """Keep the most recent messages, starting at a user message."""
    recent = list(messages[-limit:]) if limit > 0 else []
    while recent and recent[0].get("role") != "user":
        recent.pop(0)
    return recent


class AgentLoop:
    """Runs one conversational turn against the model and the tool registry."""

    def __init__(
        self,
        model: ModelClient,
        registry: ToolRegistry,
        limits: AgentLimits | None = None,
    ):
        self.model = model
        self.registry = registry
        self.limits = limits or AgentLimits()

    async def run(
        self,
        messages: list[dict[str, Any]],
        tool_context: ToolContext,
        context: str = "",
        listener: StepListener | None = None,
    ) -> AgentResult:
        """Run the loop until the model stops calling tools or the budget runs out.

        Args:
            messages: Prior turns plus the new user message.
            tool_context: Per-turn dependencies for tool executors.
            context: Memory block for the system prompt.
            listener: Optional callback receiving step and tool-result events.

        Returns:
            AgentResult with the final text, stop reason, and tool log.
        """
        log = logger.bind(user_id=tool_context.user_id, session_id=tool_context.session_id)
        executor = ToolExecutor(self.registry, tool_context, self.limits)
        transcript = [dict(m) for m in truncate_history(messages, self.limits.history_limit)]
        system_prompt = build_system_prompt(
            context,
            currency=tool_context.currency,
            today=tool_context.clock().date().isoformat(),
        )
        catalog = self.registry.catalog()

        invocations: list[ToolInvocation] = []
        usage = {"input_tokens": 0, "output_tokens": 0}
        last_text = ""

        log.info("starting_turn", message_count=len(transcript))

        for step in range(1, self.limits.max_steps + 1):
            log.debug("step", number=step)
            try:
                response = await self.model.generate(system_prompt, transcript, catalog)
            except ModelProviderError as e:
                log.error("model_provider_error", step=step, error=str(e))
                return AgentResult(
                    response=MODEL_ERROR_MESSAGE,
                    stop_reason=StopReason.ERROR,
                    steps=step,
                    tool_calls=invocations,
                    usage=usage,
                    error=str(e),
                )

            for key in usage:
                usage[key] += int(response.usage.get(key, 0))
            if response.content.strip():
                last_text = response.content

            await self._emit(
                listener,
                StepEvent(
                    type="step",
                    step=step,
                    data={
                        "text": response.content,
                        "tool_calls": [call["name"] for call in response.tool_calls],
                    },
                ),
            )

            if not response.tool_calls:
                log.info("turn_completed", steps=step, tool_calls=len(invocations))
                return AgentResult(
                    response=response.content,
                    stop_reason=StopReason.COMPLETE,
                    steps=step,
                    tool_calls=invocations,
                    usage=usage,
                )

            transcript.append({
                "role": "assistant",
                "content": response.content,
                "tool_calls": response.tool_calls,
            })

            # Results are appended in request order regardless of completion order
            results = await asyncio.gather(
                *(self._invoke(executor, step, call) for call in response.tool_calls)
            )
            for invocation in results:
                invocations.append(invocation)
                transcript.append({
                    "role": "tool_result",
                    "tool_call_id": invocation.call_id,
                    "content": format_tool_result(invocation.result),
                })
                await self._emit(
                    listener,
                    StepEvent(
                        type="tool_result",
                        step=step,
                        data={
                            "tool": invocation.name,
                            "success": invocation.success,
                            "result": invocation.result,
                        },
                    ),
                )

        log.warning("max_steps_reached", steps=self.limits.max_steps)
        return AgentResult(
            response=last_text or MAX_STEPS_NOTICE,
            stop_reason=StopReason.MAX_STEPS,
            steps=self.limits.max_steps,
            tool_calls=invocations,
            usage=usage,
        )

    async def _invoke(
        self, executor: ToolExecutor, step: int, call: dict[str, Any]
    ) -> ToolInvocation:
        arguments = call.get("arguments") or {}
        started = time.monotonic()
        result = await executor.execute(call["name"], arguments)
        return ToolInvocation(
            step=step,
            call_id=call.get("id", ""),
            name=call["name"],
            arguments=arguments,
            result=result,
            duration_ms=(time.monotonic() - started) * 1000,
        )

    async def _emit(self, listener: StepListener | None, event: StepEvent) -> None:
        if listener is None:
            return
        try:
            await listener(event)
        except Exception:
            logger.exception("step_listener_failed", event_type=event.type)
