"""Session persistence and long-term memory."""

from tidebot.memory.sessions import Session, SessionManager
from tidebot.memory.store import MemoryStore

__all__ = ["MemoryStore", "Session", "SessionManager"]
