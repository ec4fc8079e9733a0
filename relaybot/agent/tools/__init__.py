"""Provider-callable tools."""

from relaybot.agent.tools.base import Tool
from relaybot.agent.tools.registry import ToolRegistry
from relaybot.agent.tools.web import SIMULATED_SEARCH_RESULT, WebSearchTool


def default_registry() -> ToolRegistry:
    """Registry with the built-in tool declarations."""
    registry = ToolRegistry()
    registry.register(WebSearchTool())
    return registry


__all__ = ["Tool", "ToolRegistry", "WebSearchTool", "SIMULATED_SEARCH_RESULT", "default_registry"]
