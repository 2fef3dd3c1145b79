"""
Channel manager: starts channels and dispatches outbound messages to them.
"""

import asyncio
import logging
from typing import Any

from tidebot.bus import MessageBus, OutboundMessage
from tidebot.channels.base import BaseChannel
from tidebot.pairing import PairingStore

logger = logging.getLogger(__name__)


class ChannelManager:
    """
    Manages all channel integrations.

    - Initializes enabled channels from config
    - Dispatches outbound messages to the named channel
    - Restarts channels that went down, with exponential backoff
    """

    MAX_START_RETRIES = 3
    MONITOR_INTERVAL_S = 30

    def __init__(self, bus: MessageBus, pairing: PairingStore | None = None):
        self.bus = bus
        self.pairing = pairing
        self.channels: dict[str, BaseChannel] = {}
        self._channel_configs: dict[str, tuple[type[BaseChannel], dict[str, Any]]] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def init_channel(
        self, name: str, channel_class: type[BaseChannel], config: dict[str, Any]
    ) -> None:
        """Create a channel if its config says it is enabled."""
        if not config.get("enabled", False):
            return
        self.channels[name] = channel_class(name, self.bus, config, self.pairing)
        self._channel_configs[name] = (channel_class, config)

    def add_channel(self, channel: BaseChannel) -> None:
        """Register an already constructed channel."""
        self.channels[channel.name] = channel

    async def _start_channel_with_retry(self, name: str, channel: BaseChannel) -> bool:
        for attempt in range(self.MAX_START_RETRIES):
            try:
                await channel.start()
                logger.info("%s channel started", name)
                return True
            except Exception as e:
                wait = 2**attempt
                logger.warning(
                    "%s channel failed (attempt %d/%d): %s",
                    name, attempt + 1, self.MAX_START_RETRIES, e,
                )
                if attempt < self.MAX_START_RETRIES - 1:
                    await asyncio.sleep(wait)
        logger.error("%s channel failed permanently after %d attempts", name, self.MAX_START_RETRIES)
        return False

    async def start_all(self) -> None:
        """Start all channels, then the outbound dispatcher and the monitor."""
        self._running = True
        for name, channel in self.channels.items():
            await self._start_channel_with_retry(name, channel)

        self._dispatcher_task = asyncio.create_task(self._dispatch_loop())
        self._monitor_task = asyncio.create_task(self._monitor_channels())

    async def _monitor_channels(self) -> None:
        while self._running:
            await asyncio.sleep(self.MONITOR_INTERVAL_S)
            for name, channel in list(self.channels.items()):
                if channel.is_running or not self._running or name not in self._channel_configs:
                    continue
                logger.warning("%s channel appears down, attempting restart", name)
                cls, config = self._channel_configs[name]
                new_channel = cls(name, self.bus, config, self.pairing)
                if await self._start_channel_with_retry(name, new_channel):
                    self.channels[name] = new_channel

    async def stop_all(self) -> None:
        """Stop the background tasks and every channel."""
        self._running = False

        for task in (self._monitor_task, self._dispatcher_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info("%s channel stopped", name)
            except Exception:
                logger.exception("%s channel stop failed", name)

    async def _dispatch_loop(self) -> None:
        while self._running:
            msg = await self.bus.consume_outbound(timeout=1.0)
            if msg is None:
                if self.bus.closed:
                    break
                continue
            await self.dispatch(msg)

    async def dispatch(self, msg: OutboundMessage) -> bool:
        """
        Deliver one outbound message to its channel.

        Returns:
            False if the channel is unknown or sending failed.
        """
        channel = self.channels.get(msg.channel)
        if channel is None:
            logger.warning("Unknown channel '%s', dropping message for %s", msg.channel, msg.chat_id)
            return False

        try:
            await channel.send(msg)
        except Exception:
            logger.exception("Error sending to %s:%s", msg.channel, msg.chat_id)
            return False
        return True

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Channel status for the health endpoint."""
        return {
            name: {"running": channel.is_running, "type": type(channel).__name__}
            for name, channel in self.channels.items()
        }
