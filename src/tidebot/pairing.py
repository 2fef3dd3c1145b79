"""
Pairing of unknown senders.

A sender who is not on a channel's allow-list gets a short code instead of
an answer. The owner approves the code from the CLI, which adds the sender
to that channel's `allow_from` in the config file.
"""

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

from tidebot.config.loader import DATA_DIR, load_config, save_config

logger = logging.getLogger(__name__)

EXPIRE_MS = 24 * 60 * 60 * 1000
DEFAULT_STORE_PATH = DATA_DIR / "pairing" / "pending.json"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_code() -> str:
    return uuid.uuid4().hex[:6].upper()


@dataclass
class PendingPairing:
    channel: str
    sender_id: str
    chat_id: str
    code: str
    created_at_ms: int
    last_seen_at_ms: int
    request_count: int = 1


@dataclass
class PairingIssue:
    code: str
    is_new: bool


def pairing_prompt(issue: PairingIssue) -> str:
    """Text sent back to an unknown sender."""
    header = "Access requires pairing." if issue.is_new else "Pairing pending."
    return (
        f"{header}\nCode: {issue.code}\n"
        f"Owner command: tidebot pairing approve <channel> {issue.code}"
    )


class PairingStore:
    """
    JSON-backed store of pending pairing requests.

    Entries not seen for 24 hours are dropped on every access.
    """

    def __init__(self, path: Path | None = None, config_path: Path | None = None):
        self.path = path or DEFAULT_STORE_PATH
        self.config_path = config_path

    def _load(self) -> list[PendingPairing]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return [PendingPairing(**item) for item in raw.get("pending", [])]
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Ignoring unreadable pairing store %s: %s", self.path, e)
            return []

    def _save(self, pending: list[PendingPairing]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"pending": [asdict(p) for p in pending]}
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def _load_live(self) -> list[PendingPairing]:
        threshold = _now_ms() - EXPIRE_MS
        return [p for p in self._load() if p.last_seen_at_ms >= threshold]

    def issue(self, channel: str, sender_id: str, chat_id: str) -> PairingIssue:
        """Create a code for a sender, or refresh the one they already have."""
        if not channel.strip() or not sender_id.strip() or not chat_id.strip():
            raise ValueError("channel/sender/chat cannot be empty")

        pending = self._load_live()
        for entry in pending:
            if entry.channel == channel and entry.sender_id == sender_id:
                entry.last_seen_at_ms = _now_ms()
                entry.request_count += 1
                self._save(pending)
                return PairingIssue(code=entry.code, is_new=False)

        now = _now_ms()
        entry = PendingPairing(
            channel=channel,
            sender_id=sender_id,
            chat_id=chat_id,
            code=_new_code(),
            created_at_ms=now,
            last_seen_at_ms=now,
        )
        pending.append(entry)
        self._save(pending)
        logger.info("New pairing request on %s from %s (code %s)", channel, sender_id, entry.code)
        return PairingIssue(code=entry.code, is_new=True)

    def list_pending(self) -> list[PendingPairing]:
        """Live requests, most recently seen first."""
        pending = self._load_live()
        self._save(pending)
        return sorted(pending, key=lambda p: p.last_seen_at_ms, reverse=True)

    def approve(self, channel: str, code: str) -> PendingPairing:
        """
        Approve a pending code and add the sender to the channel allow-list.

        Raises:
            KeyError: if no live request matches.
            ValueError: if the channel has no allow-list in the config.
        """
        pending = self._load_live()
        match = next(
            (p for p in pending if p.channel == channel and p.code.upper() == code.upper()),
            None,
        )
        if match is None:
            raise KeyError(f"pending pairing not found for channel={channel}, code={code}")

        config = load_config(self.config_path)
        channel_config = getattr(config.channels, channel, None)
        if channel_config is None or not hasattr(channel_config, "allow_from"):
            raise ValueError(f"channel '{channel}' does not support allowlist pairing")

        if match.sender_id not in channel_config.allow_from:
            channel_config.allow_from.append(match.sender_id)
        save_config(config, self.config_path)

        pending.remove(match)
        self._save(pending)
        return match

    def reject(self, channel: str, code: str) -> bool:
        """Drop a pending code. Returns False if it did not exist."""
        pending = self._load_live()
        kept = [
            p for p in pending if not (p.channel == channel and p.code.upper() == code.upper())
        ]
        if len(kept) == len(pending):
            return False
        self._save(kept)
        return True
