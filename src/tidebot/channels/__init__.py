"""Channel integrations for tidebot."""

from tidebot.channels.base import BaseChannel, is_allowed_sender
from tidebot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager", "is_allowed_sender"]
