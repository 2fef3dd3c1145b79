"""
Tool: spawn

Hands a task to a background subagent. The subagent reports back through
the bus when it finishes.
"""

from typing import TYPE_CHECKING, Any

from tidebot.agent.tools.base import Tool, ToolContext

if TYPE_CHECKING:
    from tidebot.agent.subagent import SubagentManager

DIRECT_ORIGIN = ToolContext(channel="cli", chat_id="direct")


class SpawnTool(Tool):
    name = "spawn"
    description = (
        "Spawn a subagent to handle a task in the background. "
        "Use this for complex or time-consuming tasks."
    )
    parameters = {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "The task for the subagent to complete"},
            "label": {"type": "string", "description": "Optional short label for the task"},
        },
        "required": ["task"],
    }
    context_aware = True

    def __init__(self, manager: "SubagentManager"):
        self._manager = manager

    async def execute(
        self,
        task: str,
        label: str | None = None,
        context: ToolContext | None = None,
        **kwargs: Any,
    ) -> str:
        origin = context or DIRECT_ORIGIN
        return await self._manager.spawn(
            task=task,
            label=label,
            origin_channel=origin.channel,
            origin_chat_id=origin.chat_id,
        )
