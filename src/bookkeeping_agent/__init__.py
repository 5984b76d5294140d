"""Bookkeeping Agent - LLM assistant runtime with guarded ledger tools and memory."""

__version__ = "0.1.0"

from bookkeeping_agent.agent import AgentLoop, AgentResult, StopReason
from bookkeeping_agent.chat import ChatService, ChatTurn
from bookkeeping_agent.clients import (
    BookkeepingAPIClient,
    ClaudeClient,
    OpenAIClient,
    create_model_client,
)
from bookkeeping_agent.config import AgentLimits, configure_logging, get_settings
from bookkeeping_agent.ledger import BalancedEntryGuard
from bookkeeping_agent.memory import MemoryLifecycleManager, MemoryStore
from bookkeeping_agent.tools import TOOL_REGISTRY, ToolExecutor

__all__ = [
    # Version
    "__version__",
    # Agent
    "AgentLoop",
    "AgentResult",
    "StopReason",
    "ChatService",
    "ChatTurn",
    # Clients
    "BookkeepingAPIClient",
    "ClaudeClient",
    "OpenAIClient",
    "create_model_client",
    # Ledger
    "BalancedEntryGuard",
    # Memory
    "MemoryStore",
    "MemoryLifecycleManager",
    # Tools
    "TOOL_REGISTRY",
    "ToolExecutor",
    # Config
    "AgentLimits",
    "get_settings",
    "configure_logging",
]
