"""
Tool registry: name → tool, with uniform validated dispatch.
"""

import logging
from typing import Any

from tidebot.agent.tools.base import Tool, ToolContext

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Holds the tools available to one agent.

    execute() never raises: unknown tools, invalid parameters and tool
    failures all come back as text so the model can read them and retry.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Add a tool. A later registration with the same name replaces it."""
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Function-calling schemas for every tool, sent as-is to the LLM."""
        return [tool.to_schema() for tool in self._tools.values()]

    async def execute(
        self, name: str, params: dict[str, Any], context: ToolContext | None = None
    ) -> str:
        """
        Validate params and run the named tool.

        Context-aware tools receive `context` as a keyword argument; the
        registry itself keeps no per-turn state.
        """
        tool = self._tools.get(name)
        if tool is None:
            return f"Error: Tool '{name}' not found"

        errors = tool.validate_params(params)
        if errors:
            return f"Error: Invalid parameters for tool '{name}': {'; '.join(errors)}"

        try:
            if tool.context_aware:
                return await tool.execute(**params, context=context)
            return await tool.execute(**params)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return f"Error executing {name}: {e}"
