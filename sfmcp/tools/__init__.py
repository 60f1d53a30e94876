"""Tools exposed to MCP clients.

The transport core consumes tools only through ``ToolRegistry``; Salesforce
tool modules register their handlers here at startup.
"""

from sfmcp.tools import utils_tool
from sfmcp.tools.registry import ToolContext, ToolHandler, ToolRegistry, to_call_result


def build_default_registry() -> ToolRegistry:
    """Registry with every built-in tool registered."""
    registry = ToolRegistry()
    utils_tool.register(registry)
    return registry


__all__ = [
    "ToolContext",
    "ToolHandler",
    "ToolRegistry",
    "build_default_registry",
    "to_call_result",
]
