"""Tool catalog for the bookkeeping assistant.

The registry is closed: a tool the model names that is not listed here is
rejected by the executor.
"""

from bookkeeping_agent.tools.memory_tools import MEMORY_TOOLS
from bookkeeping_agent.tools.read_tools import READ_TOOLS
from bookkeeping_agent.tools.registry import ToolRegistry, ToolSpec
from bookkeeping_agent.tools.write_tools import WRITE_TOOLS

ALL_TOOLS: list[ToolSpec] = READ_TOOLS + WRITE_TOOLS + MEMORY_TOOLS


def build_registry() -> ToolRegistry:
    """Build the registry holding every tool."""
    return ToolRegistry.from_specs(ALL_TOOLS)


TOOL_REGISTRY = build_registry()
