"""Static tool registry: typed input contracts and executors per tool."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel

from bookkeeping_agent.clients.bookkeeping_api import BookkeepingAPIClient
from bookkeeping_agent.ledger.guard import BalancedEntryGuard
from bookkeeping_agent.memory.models import Clock, utcnow
from bookkeeping_agent.memory.store import MemoryStore


class ToolCategory(str, Enum):
    """What a tool is allowed to do."""

    READ = "read"
    WRITE = "write"
    MEMORY = "memory"
    REASONING = "reasoning"


@dataclass
class ToolContext:
    """Per-turn dependencies handed to every tool executor."""

    user_id: str
    backend: BookkeepingAPIClient
    guard: BalancedEntryGuard
    memory: MemoryStore | None = None
    session_id: str | None = None
    currency: str = "MYR"
    clock: Clock = utcnow


ToolHandler = Callable[[ToolContext, Any], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    """One entry of the tool catalog."""

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler
    category: ToolCategory
    result_family: str | None = None
    audit_resource: str | None = None

    def to_catalog_entry(self) -> dict[str, Any]:
        """Tool definition in the provider-neutral catalog format."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": schema,
        }


@dataclass
class ToolRegistry:
    """Closed mapping of tool name to spec."""

    _tools: dict[str, ToolSpec] = field(default_factory=dict)

    @classmethod
    def from_specs(cls, specs: Iterable[ToolSpec]) -> "ToolRegistry":
        registry = cls()
        for spec in specs:
            registry.register(spec)
        return registry

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def by_category(self, category: ToolCategory) -> list[ToolSpec]:
        return [spec for spec in self._tools.values() if spec.category == category]

    def catalog(self) -> list[dict[str, Any]]:
        """Tool definitions to send to the model."""
        return [spec.to_catalog_entry() for spec in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
