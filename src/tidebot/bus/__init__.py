"""Message bus for decoupling channels from agent."""

from tidebot.bus.events import InboundMessage, OutboundMessage
from tidebot.bus.queue import MessageBus

__all__ = ["InboundMessage", "OutboundMessage", "MessageBus"]
