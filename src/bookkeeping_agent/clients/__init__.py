"""Model provider and bookkeeping backend clients."""

from bookkeeping_agent.clients.base import LLMProvider, ModelClient, ModelResponse
from bookkeeping_agent.clients.bookkeeping_api import (
    BookkeepingAPIClient,
    BookkeepingAPIError,
    NotFoundError,
    RateLimitError,
)
from bookkeeping_agent.clients.claude import ClaudeClient
from bookkeeping_agent.clients.openai_client import OpenAIClient
from bookkeeping_agent.config import get_settings


def create_model_client(provider: LLMProvider | None = None) -> ClaudeClient | OpenAIClient:
    """Create the LLM client for the given provider or the configured one."""
    if provider is None:
        try:
            provider = LLMProvider(get_settings().llm_provider.lower())
        except ValueError:
            provider = LLMProvider.CLAUDE

    if provider == LLMProvider.OPENAI:
        return OpenAIClient()
    return ClaudeClient()


__all__ = [
    "BookkeepingAPIClient",
    "BookkeepingAPIError",
    "ClaudeClient",
    "LLMProvider",
    "ModelClient",
    "ModelResponse",
    "NotFoundError",
    "OpenAIClient",
    "RateLimitError",
    "create_model_client",
]
