"""
Exception types shared across tidebot.
"""


class TidebotError(Exception):
    """Base class for tidebot errors."""


class BusClosedError(TidebotError):
    """Raised when publishing to a message bus that has been shut down."""


class ProviderError(TidebotError):
    """Raised when the LLM provider cannot produce a completion."""


class ToolError(TidebotError):
    """Raised by a tool; the registry turns it into tool output text."""
