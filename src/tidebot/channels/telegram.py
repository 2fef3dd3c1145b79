"""
Telegram channel integration using python-telegram-bot.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from telegram import Message, Update
from telegram.constants import ChatAction
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from tidebot.bus import MessageBus, OutboundMessage
from tidebot.channels.base import BaseChannel
from tidebot.pairing import PairingStore

logger = logging.getLogger(__name__)

# Telegram message length limit
MAX_MESSAGE_LENGTH = 4096

PHOTO_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".webp")
AUDIO_SUFFIXES = (".mp3", ".m4a", ".wav", ".flac")


def chunk_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """
    Split text into chunks of at most `limit` characters.

    Splits at paragraph boundaries first, then sentence boundaries,
    then word boundaries, and hard-cuts as a last resort.
    """
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        chunk = remaining[:limit]
        split_at = chunk.rfind("\n\n")
        if split_at <= 0:
            split_at = chunk.rfind(". ")
            if split_at > 0:
                split_at += 1
        if split_at <= 0:
            split_at = chunk.rfind(" ")
        if split_at <= 0:
            split_at = limit

        chunks.append(remaining[:split_at].rstrip())
        remaining = remaining[split_at:].lstrip()

    return chunks


def _attachments(message: Message) -> list[tuple[str, str, str, str]]:
    """(file_id, filename prefix, suffix, placeholder text) per attachment."""
    found = []
    if message.photo:
        found.append((message.photo[-1].file_id, "photo", ".jpg", "[Photo attached]"))
    if message.document:
        doc = message.document
        suffix = Path(doc.file_name).suffix if doc.file_name else ""
        found.append((doc.file_id, "doc", suffix, f"[Document attached: {doc.file_name or 'file'}]"))
    if message.voice:
        found.append((message.voice.file_id, "voice", ".ogg", "[Voice message attached]"))
    if message.audio:
        audio = message.audio
        suffix = Path(audio.file_name).suffix if audio.file_name else ".mp3"
        found.append((audio.file_id, "audio", suffix, f"[Audio attached: {audio.file_name or 'audio'}]"))
    return found


class TelegramChannel(BaseChannel):
    """
    Telegram channel using python-telegram-bot v20+ long polling.

    Handles text, photos, documents, voice and audio, plus the /start,
    /help and /reset commands.
    """

    def __init__(
        self,
        name: str,
        bus: MessageBus,
        config: dict[str, Any],
        pairing: PairingStore | None = None,
    ):
        super().__init__(name, bus, config, pairing)
        self._app: Application | None = None
        self._media_dir: Path | None = None

    @property
    def token(self) -> str:
        return self.config.get("token", "")

    async def start(self) -> None:
        """Start long polling. Raises if the token is missing or polling fails."""
        if self._running:
            return
        if not self.token:
            raise ValueError("Telegram token not configured")

        self._app = Application.builder().token(self.token).build()
        media_filter = (
            (filters.TEXT & ~filters.COMMAND)
            | filters.PHOTO
            | filters.Document.ALL
            | filters.VOICE
            | filters.AUDIO
        )
        self._app.add_handler(MessageHandler(media_filter, self._on_message))
        self._app.add_handler(CommandHandler(["start", "help", "reset"], self._on_command))

        workspace = self.config.get("workspace", "~/.tidebot/workspace")
        self._media_dir = Path(workspace).expanduser().resolve() / "media" / "telegram"
        self._media_dir.mkdir(parents=True, exist_ok=True)

        await self._app.initialize()
        await self._app.start()
        assert self._app.updater is not None
        await self._app.updater.start_polling()
        self._running = True

    async def stop(self) -> None:
        """Stop polling with the library's shutdown sequence."""
        self._running = False
        if not self._app:
            return
        if self._app.updater and self._app.updater.running:
            await self._app.updater.stop()
        if self._app.running:
            await self._app.stop()
            await self._app.shutdown()

    @staticmethod
    def _sender_id(update: Update) -> str:
        """Numeric id, with the username as an alias when there is one."""
        user = update.effective_user
        if user.username:
            return f"{user.id}|{user.username}"
        return str(user.id)

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_user or not update.message or not update.effective_chat:
            return
        message = update.message
        sender_id = self._sender_id(update)

        if self.is_allowed(sender_id):
            await update.effective_chat.send_action(ChatAction.TYPING)

        content = message.text or message.caption or ""
        media: list[Path] = []
        for file_id, prefix, suffix, placeholder in _attachments(message):
            path = await self._download_file(file_id, prefix, suffix)
            if path:
                media.append(path)
            content = content or placeholder

        await self.handle_message(
            sender_id=sender_id,
            chat_id=str(update.effective_chat.id),
            content=content,
            media=media,
            metadata={"update_id": update.update_id, "message_id": message.message_id},
        )

    async def _on_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_user or not update.message or not update.effective_chat:
            return
        command = (update.message.text or "").split()[0].split("@")[0]

        if command == "/start":
            await update.message.reply_text(
                "Hi! I'm tidebot, your personal AI assistant.\n\n"
                "Just send me a message and I'll respond."
            )
        elif command == "/help":
            await update.message.reply_text(
                "Available commands:\n\n"
                "/start - Start the bot\n"
                "/help - Show this help\n"
                "/reset - Reset conversation"
            )
        elif command == "/reset":
            await self.handle_message(
                sender_id=self._sender_id(update),
                chat_id=str(update.effective_chat.id),
                content="/reset",
                metadata={"command": "reset"},
            )

    async def _download_file(self, file_id: str, prefix: str, ext: str) -> Path | None:
        """Download an attachment into the media directory."""
        if not self._media_dir or not self._app:
            return None
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        dest = self._media_dir / f"{prefix}_{timestamp}_{file_id[:8]}{ext}"
        try:
            tg_file = await self._app.bot.get_file(file_id)
            await tg_file.download_to_drive(dest)
        except Exception as e:
            logger.warning("Error downloading Telegram file %s: %s", file_id, e)
            return None
        return dest

    async def send(self, msg: OutboundMessage) -> None:
        """Send text (chunked) and any attached media."""
        if not self._app:
            raise RuntimeError("Telegram channel is not started")

        bot = self._app.bot
        if msg.content:
            for chunk in chunk_message(msg.content):
                await bot.send_message(chat_id=msg.chat_id, text=chunk)

        for media_path in msg.media:
            path = Path(media_path)
            if not path.exists():
                logger.warning("Media file not found: %s", path)
                continue
            suffix = path.suffix.lower()
            with open(path, "rb") as f:
                if suffix in PHOTO_SUFFIXES:
                    await bot.send_photo(chat_id=msg.chat_id, photo=f)
                elif suffix == ".ogg":
                    await bot.send_voice(chat_id=msg.chat_id, voice=f)
                elif suffix in AUDIO_SUFFIXES:
                    await bot.send_audio(chat_id=msg.chat_id, audio=f)
                else:
                    await bot.send_document(chat_id=msg.chat_id, document=f)
