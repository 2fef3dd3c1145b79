"""tidebot: a personal AI agent runtime."""

__version__ = "0.1.0"
