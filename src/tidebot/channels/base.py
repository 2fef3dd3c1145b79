"""
Abstract base class for all channels.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from tidebot.bus import InboundMessage, MessageBus, OutboundMessage
from tidebot.pairing import PairingStore, pairing_prompt

logger = logging.getLogger(__name__)


def is_allowed_sender(sender_id: str, allow_from: list[str]) -> bool:
    """
    Check a sender against an allow-list (empty = everyone).

    Composite ids such as "12345|alice" match if any part is listed.
    """
    if not allow_from:
        return True
    if sender_id in allow_from:
        return True
    if "|" in sender_id:
        return any(part in allow_from for part in sender_id.split("|"))
    return False


class BaseChannel(ABC):
    """
    Abstract base for all channel integrations.

    Channels must implement:
    - `start()`: connect to the platform and listen for messages
    - `stop()`: clean shutdown
    - `send()`: deliver an outbound message to the platform

    Incoming platform messages go through `handle_message()`.
    """

    def __init__(
        self,
        name: str,
        bus: MessageBus,
        config: dict[str, Any],
        pairing: PairingStore | None = None,
    ):
        self.name = name
        self.bus = bus
        self.config = config
        self.pairing = pairing or PairingStore()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def enabled(self) -> bool:
        """Whether this channel is enabled in config."""
        return self.config.get("enabled", False)

    @property
    def allow_from(self) -> list[str]:
        """List of allowed sender IDs (empty = all allowed)."""
        return self.config.get("allow_from", [])

    def is_allowed(self, sender_id: str) -> bool:
        return is_allowed_sender(sender_id, self.allow_from)

    @abstractmethod
    async def start(self) -> None:
        """Start the channel: connect to platform, listen for messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel."""

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """Send an outbound message through this channel."""

    async def handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        media: list[Path] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Publish a platform message to the bus.

        Senders not on the allow-list get a pairing prompt instead; their
        message never reaches the agent.
        """
        if not self.is_allowed(sender_id):
            try:
                issue = self.pairing.issue(self.name, sender_id, chat_id)
            except (OSError, ValueError) as e:
                logger.warning("Could not issue pairing code for %s: %s", sender_id, e)
                return
            await self.bus.publish_outbound(
                OutboundMessage(channel=self.name, chat_id=chat_id, content=pairing_prompt(issue))
            )
            return

        await self.bus.publish_inbound(
            InboundMessage(
                channel=self.name,
                sender_id=sender_id,
                chat_id=chat_id,
                content=content,
                media=list(media or []),
                metadata=dict(metadata or {}),
            )
        )
