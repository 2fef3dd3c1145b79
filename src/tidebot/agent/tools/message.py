"""
Tool: message

Lets the agent push a message to a chat while it is still working.
"""

from typing import Any, Awaitable, Callable

from tidebot.agent.tools.base import Tool, ToolContext
from tidebot.bus.events import OutboundMessage


class MessageTool(Tool):
    name = "message"
    description = (
        "Send a message to the user. Use this when you need to communicate "
        "a progress update to a chat channel."
    )
    parameters = {
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "The message content to send"},
            "channel": {"type": "string", "description": "Optional target channel"},
            "chat_id": {"type": "string", "description": "Optional target chat/user ID"},
        },
        "required": ["content"],
    }
    context_aware = True

    def __init__(self, send_callback: Callable[[OutboundMessage], Awaitable[None]]):
        self._send = send_callback

    async def execute(
        self,
        content: str,
        channel: str | None = None,
        chat_id: str | None = None,
        context: ToolContext | None = None,
        **kwargs: Any,
    ) -> str:
        if not (channel and chat_id):
            if context is None:
                return "Error: No target channel/chat specified"
            channel, chat_id = context.channel, context.chat_id

        await self._send(OutboundMessage(channel=channel, chat_id=chat_id, content=content))
        return f"Message sent to {channel}:{chat_id}"
