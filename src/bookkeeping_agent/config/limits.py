"""Immutable limits shared by the agent loop and the tool executor."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from bookkeeping_agent.config.settings import FlatSettings, get_settings

# Maximum rows returned per result family
DEFAULT_RESULT_CAPS: Mapping[str, int] = MappingProxyType({
    "invoices": 50,
    "customers": 50,
    "vendors": 50,
    "bills": 50,
    "quotations": 50,
    "accounts": 100,
    "transactions": 100,
    "periods": 24,  # two years of monthly periods
    "memories": 20,
})


@dataclass(frozen=True)
class AgentLimits:
    """Resource limits for one conversational turn."""

    max_steps: int = 10
    history_limit: int = 8
    tool_timeout_seconds: float = 10.0
    max_tool_calls_per_request: int = 10
    result_caps: Mapping[str, int] = field(default_factory=lambda: DEFAULT_RESULT_CAPS)

    def cap_for(self, family: str | None) -> int | None:
        """Get the result cap for a tool family, if any."""
        if family is None:
            return None
        return self.result_caps.get(family)

    @classmethod
    def from_settings(cls, settings: FlatSettings | None = None) -> "AgentLimits":
        """Build limits from application settings."""
        settings = settings or get_settings()
        return cls(
            max_steps=settings.agent_max_steps,
            history_limit=settings.agent_history_limit,
            tool_timeout_seconds=settings.tool_timeout_seconds,
            max_tool_calls_per_request=settings.max_tool_calls_per_request,
        )
