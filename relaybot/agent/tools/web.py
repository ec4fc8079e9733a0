"""Web search tool declaration."""

from typing import Any

from loguru import logger

from relaybot.agent.tools.base import Tool

SIMULATED_SEARCH_RESULT = "Tool feature coming soon (simulated search)"


class WebSearchTool(Tool):
    """Declared so the model can request a search; execution is a placeholder."""

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return "Search the web for real-time information and news."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query."},
            },
            "required": ["query"],
        }

    async def execute(self, query: str = "", **kwargs: Any) -> str:
        logger.info(f"Tool call received: web_search query={query!r}")
        return SIMULATED_SEARCH_RESULT
