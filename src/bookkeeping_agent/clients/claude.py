"""Claude (Anthropic) LLM client with function calling support."""

from typing import Any

import anthropic
import structlog

from bookkeeping_agent.clients.base import ModelResponse
from bookkeeping_agent.config import get_settings
from bookkeeping_agent.errors import ModelProviderError

logger = structlog.get_logger(__name__)


class ClaudeClient:
    """Client for Anthropic's Claude API with tool use support."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.anthropic_api_key.get_secret_value()
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        self._logger = logger.bind(client="claude", model=self._model)

    def _convert_tools_to_anthropic_format(
        self, tools: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Convert catalog entries to Anthropic tool definitions."""
        return [
            {
                "name": tool["name"],
                "description": tool["description"],
                "input_schema": tool["input_schema"],
            }
            for tool in tools
        ]

    def _convert_messages_to_anthropic_format(
        self, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Convert the transcript to Anthropic's message format.

        Consecutive tool results are merged into a single user message, as
        Anthropic requires all results for one assistant turn together.
        """
        anthropic_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg["role"] == "user":
                anthropic_messages.append({
                    "role": "user",
                    "content": msg["content"],
                })
            elif msg["role"] == "assistant":
                content_blocks: list[dict[str, Any]] = []

                if msg.get("content"):
                    content_blocks.append({
                        "type": "text",
                        "text": msg["content"],
                    })

                for tool_call in msg.get("tool_calls") or []:
                    content_blocks.append({
                        "type": "tool_use",
                        "id": tool_call["id"],
                        "name": tool_call["name"],
                        "input": tool_call["arguments"],
                    })

                anthropic_messages.append({
                    "role": "assistant",
                    "content": content_blocks if content_blocks else msg.get("content", ""),
                })
            elif msg["role"] == "tool_result":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg["tool_call_id"],
                    "content": msg["content"],
                }
                previous = anthropic_messages[-1] if anthropic_messages else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and previous["content"]
                    and previous["content"][0].get("type") == "tool_result"
                ):
                    previous["content"].append(block)
                else:
                    anthropic_messages.append({"role": "user", "content": [block]})

        return anthropic_messages

    def _parse_response(self, response: anthropic.types.Message) -> ModelResponse:
        """Parse Anthropic response into our format."""
        text_parts: list[str] = []
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append({
                    "id": block.id,
                    "name": block.name,
                    "arguments": block.input,
                })

        return ModelResponse(
            content="\n".join(text_parts),
            tool_calls=tool_calls,
            stop_reason=response.stop_reason or "end_turn",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        """Generate a response from Claude.

        Args:
            system_prompt: The system prompt with injected memory context.
            messages: Transcript as list of message dicts.
            tools: Optional tool catalog for function calling.

        Returns:
            ModelResponse with content, tool calls, and usage info.

        Raises:
            ModelProviderError: If the API call fails.
        """
        self._logger.debug(
            "generating_response",
            message_count=len(messages),
            tool_count=len(tools) if tools else 0,
        )

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": self._convert_messages_to_anthropic_format(messages),
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = self._convert_tools_to_anthropic_format(tools)

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise ModelProviderError("claude", str(e)) from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            stop_reason=parsed.stop_reason,
            tool_calls=len(parsed.tool_calls),
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
