"""Agent loop and prompt construction."""

from bookkeeping_agent.agent.loop import (
    MAX_STEPS_NOTICE,
    MODEL_ERROR_MESSAGE,
    AgentLoop,
    AgentResult,
    StepEvent,
    StepListener,
    StopReason,
    ToolInvocation,
    truncate_history,
)
from bookkeeping_agent.agent.prompt import SYSTEM_PROMPT, build_system_prompt

__all__ = [
    "MAX_STEPS_NOTICE",
    "MODEL_ERROR_MESSAGE",
    "SYSTEM_PROMPT",
    "AgentLoop",
    "AgentResult",
    "StepEvent",
    "StepListener",
    "StopReason",
    "ToolInvocation",
    "build_system_prompt",
    "truncate_history",
]
