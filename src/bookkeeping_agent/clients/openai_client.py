"""OpenAI GPT client with function calling support."""

import json
from typing import Any

import openai
import structlog

from bookkeeping_agent.clients.base import ModelResponse
from bookkeeping_agent.config import get_settings
from bookkeeping_agent.errors import ModelProviderError

logger = structlog.get_logger(__name__)


class OpenAIClient:
    """Client for OpenAI's chat completions API with tool use support.

    Also supports OpenAI-compatible servers via a custom base_url.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.openai_api_key.get_secret_value()
        self._base_url = base_url
        self._model = model or settings.gpt_model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature

        client_kwargs: dict[str, Any] = {"api_key": self._api_key}
        if self._base_url:
            client_kwargs["base_url"] = self._base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._logger = logger.bind(client="openai", model=self._model)

    def _convert_tools_to_openai_format(
        self, tools: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Convert catalog entries to OpenAI function definitions."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in tools
        ]

    def _convert_messages_to_openai_format(
        self, system_prompt: str, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Convert the transcript to OpenAI's message format."""
        openai_messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]

        for msg in messages:
            if msg["role"] == "user":
                openai_messages.append({"role": "user", "content": msg["content"]})
            elif msg["role"] == "assistant":
                assistant_msg: dict[str, Any] = {"role": "assistant"}
                if msg.get("content"):
                    assistant_msg["content"] = msg["content"]
                if msg.get("tool_calls"):
                    assistant_msg["tool_calls"] = [
                        {
                            "id": tc["id"],
                            "type": "function",
                            "function": {
                                "name": tc["name"],
                                "arguments": json.dumps(tc["arguments"]),
                            },
                        }
                        for tc in msg["tool_calls"]
                    ]
                openai_messages.append(assistant_msg)
            elif msg["role"] == "tool_result":
                openai_messages.append({
                    "role": "tool",
                    "tool_call_id": msg["tool_call_id"],
                    "content": msg["content"],
                })

        return openai_messages

    def _parse_response(self, response: openai.types.chat.ChatCompletion) -> ModelResponse:
        """Parse OpenAI response into our format."""
        message = response.choices[0].message
        tool_calls = []

        for tc in message.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                # Left for input validation to reject
                arguments = {"_raw": tc.function.arguments}
            tool_calls.append({
                "id": tc.id,
                "name": tc.function.name,
                "arguments": arguments,
            })

        stop_reason_map = {
            "stop": "end_turn",
            "tool_calls": "tool_use",
            "length": "max_tokens",
            "content_filter": "content_filter",
        }
        finish_reason = response.choices[0].finish_reason

        return ModelResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            stop_reason=stop_reason_map.get(finish_reason or "stop", "end_turn"),
            usage={
                "input_tokens": response.usage.prompt_tokens if response.usage else 0,
                "output_tokens": response.usage.completion_tokens if response.usage else 0,
            },
        )

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        """Generate a response from GPT.

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
            "messages": self._convert_messages_to_openai_format(system_prompt, messages),
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if tools:
            kwargs["tools"] = self._convert_tools_to_openai_format(tools)
            kwargs["tool_choice"] = "auto"

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            self._logger.error("api_error", error=str(e))
            raise ModelProviderError("openai", str(e)) from e

        parsed = self._parse_response(response)
        self._logger.info(
            "response_generated",
            stop_reason=parsed.stop_reason,
            tool_calls=len(parsed.tool_calls),
            input_tokens=parsed.usage["input_tokens"],
            output_tokens=parsed.usage["output_tokens"],
        )
        return parsed
