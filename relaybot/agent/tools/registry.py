"""Tool registry."""

from typing import Any

from loguru import logger

from relaybot.agent.tools.base import Tool


class ToolRegistry:
    """Holds the declared tools and runs tool calls by name."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool; failures come back as text so the model still gets a result."""
        tool = self._tools.get(name)
        if tool is None:
            return f"Error: Tool '{name}' not found"
        try:
            return await tool.execute(**(arguments or {}))
        except Exception as e:
            logger.warning(f"Tool {name} failed: {e}")
            return f"Error executing {name}: {e}"

    def __len__(self) -> int:
        return len(self._tools)
