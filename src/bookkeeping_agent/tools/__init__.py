"""Tools module for the bookkeeping agent."""

from bookkeeping_agent.tools.definitions import ALL_TOOLS, TOOL_REGISTRY, build_registry
from bookkeeping_agent.tools.executor import ToolExecutor, apply_result_cap
from bookkeeping_agent.tools.registry import ToolCategory, ToolContext, ToolRegistry, ToolSpec

__all__ = [
    # Registry
    "ToolCategory",
    "ToolContext",
    "ToolRegistry",
    "ToolSpec",
    # Tool Definitions
    "ALL_TOOLS",
    "TOOL_REGISTRY",
    "build_registry",
    # Tool Executor
    "ToolExecutor",
    "apply_result_cap",
]
