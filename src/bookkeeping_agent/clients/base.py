"""Shared response type and interface for LLM clients."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class LLMProvider(str, Enum):
    """LLM provider selection."""

    CLAUDE = "claude"
    OPENAI = "openai"


@dataclass
class ModelResponse:
    """One model round: text, requested tool calls and usage."""

    content: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    stop_reason: str = "end_turn"
    usage: dict[str, int] = field(default_factory=dict)


class ModelClient(Protocol):
    """Anything that can run one round of tool-calling generation."""

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse: ...
