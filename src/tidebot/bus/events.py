"""
Message types flowing through the bus.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

SYSTEM_CHANNEL = "system"


@dataclass
class InboundMessage:
    """Message from a channel (or a background task) to the agent."""

    channel: str
    sender_id: str
    chat_id: str
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    media: list[Path] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def session_key(self) -> str:
        """Key for session storage: channel:chat_id"""
        return f"{self.channel}:{self.chat_id}"

    @property
    def is_system(self) -> bool:
        """True for cron/subagent turns addressed to another conversation."""
        return self.channel == SYSTEM_CHANNEL


@dataclass
class OutboundMessage:
    """Message from the agent to a channel."""

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    media: list[Path] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
