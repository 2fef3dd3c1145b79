"""
Conversation sessions persisted as JSON Lines.

File layout ({workspace}/sessions/<key>.jsonl):
    line 1: {"_type": "metadata", "created_at": ..., "updated_at": ..., "metadata": {...}}
    line 2+: one message record per line
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def safe_filename(name: str) -> str:
    """Replace characters that are not allowed in file names."""
    return _UNSAFE_CHARS.sub("_", name).strip()


@dataclass
class Session:
    """
    One conversation, keyed by channel:chat_id.

    Messages are dicts with role, content, timestamp and an optional
    tools_used list.
    """

    key: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(
        self, role: str, content: str, tools_used: list[str] | None = None
    ) -> None:
        message: dict[str, Any] = {
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
        }
        if tools_used:
            message["tools_used"] = list(tools_used)
        self.messages.append(message)
        self.updated_at = datetime.now()

    def get_history(self, max_messages: int) -> list[dict[str, str]]:
        """
        Return the most recent user messages in LLM format, oldest first.

        Assistant and tool messages are never replayed: the model must not
        reason over its own stale output from earlier turns.
        """
        if max_messages <= 0:
            return []
        user_messages = [m for m in self.messages if m.get("role") == "user"]
        return [
            {"role": "user", "content": m.get("content", "")}
            for m in user_messages[-max_messages:]
        ]

    def clear(self) -> None:
        self.messages = []
        self.updated_at = datetime.now()


class SessionManager:
    """
    Loads, caches and saves sessions.

    Saves are full overwrites. There is no per-key locking: the agent loop
    is the only writer and handles one turn at a time.
    """

    def __init__(self, workspace: Path):
        self.sessions_dir = Path(workspace) / "sessions"
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self._cache: dict[str, Session] = {}

    def _session_path(self, key: str) -> Path:
        return self.sessions_dir / f"{safe_filename(key.replace(':', '_'))}.jsonl"

    def get_or_create(self, key: str) -> Session:
        if key in self._cache:
            return self._cache[key]

        session = self._load(key)
        if session is None:
            session = Session(key=key)
        self._cache[key] = session
        return session

    def _load(self, key: str) -> Session | None:
        path = self._session_path(key)
        if not path.exists():
            return None

        session = Session(key=key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    record = json.loads(line)
                    if record.get("_type") == "metadata":
                        if record.get("created_at"):
                            session.created_at = datetime.fromisoformat(record["created_at"])
                        if record.get("updated_at"):
                            session.updated_at = datetime.fromisoformat(record["updated_at"])
                        session.metadata = record.get("metadata") or {}
                    else:
                        session.messages.append(record)
        except (json.JSONDecodeError, ValueError, OSError) as e:
            logger.warning("Could not load session %s: %s", key, e)
            return None
        return session

    def save(self, session: Session) -> None:
        """Write the whole session to disk. Errors propagate to the caller."""
        path = self._session_path(session.key)
        path.parent.mkdir(parents=True, exist_ok=True)

        lines = [
            json.dumps(
                {
                    "_type": "metadata",
                    "created_at": session.created_at.isoformat(),
                    "updated_at": session.updated_at.isoformat(),
                    "metadata": session.metadata,
                },
                ensure_ascii=False,
            )
        ]
        lines.extend(json.dumps(m, ensure_ascii=False) for m in session.messages)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        self._cache[session.key] = session

    def delete(self, key: str) -> bool:
        """Forget a session. Returns True if a file was removed."""
        self._cache.pop(key, None)
        path = self._session_path(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def list_sessions(self) -> list[dict[str, Any]]:
        """Summaries of the sessions on disk, most recently updated first."""
        sessions = []
        for path in self.sessions_dir.glob("*.jsonl"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    first = json.loads(f.readline() or "{}")
            except (json.JSONDecodeError, OSError):
                continue
            sessions.append(
                {
                    "key": path.stem.replace("_", ":", 1),
                    "updated_at": first.get("updated_at"),
                    "path": str(path),
                }
            )
        sessions.sort(key=lambda s: s["updated_at"] or "", reverse=True)
        return sessions
