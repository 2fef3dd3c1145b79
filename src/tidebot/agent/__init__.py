"""Agent core: loop, context, turn guard and subagents."""

from tidebot.agent.context import ContextBuilder
from tidebot.agent.loop import AgentLoop
from tidebot.agent.subagent import SubagentManager
from tidebot.agent.turn_guard import TurnGuard

__all__ = ["AgentLoop", "ContextBuilder", "SubagentManager", "TurnGuard"]
