"""Built-in agent tools."""

from tidebot.agent.tools.base import Tool, ToolContext
from tidebot.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolContext", "ToolRegistry"]
