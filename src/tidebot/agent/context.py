"""
Context builder: system prompt and per-turn message assembly.
"""

import base64
import logging
import mimetypes
import platform
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from tidebot.memory.store import MemoryStore
from tidebot.skills.loader import SkillsLoader

logger = logging.getLogger(__name__)

BOOTSTRAP_FILES = ["AGENTS.md", "SOUL.md", "USER.md", "TOOLS.md", "IDENTITY.md"]
SECTION_SEPARATOR = "\n\n---\n\n"


class ContextBuilder:
    """
    Builds what the model sees at the start of every turn.

    Only user messages from earlier turns are ever replayed; the caller is
    expected to pass history from Session.get_history().
    """

    def __init__(self, workspace: Path, builtin_skills_dir: Path | None = None):
        self.workspace = Path(workspace)
        self.memory = MemoryStore(self.workspace)
        self.skills = SkillsLoader(self.workspace, builtin_skills_dir)

    def build_system_prompt(self, skill_names: list[str] | None = None) -> str:
        """
        Assemble the system prompt. Empty sections are left out.

        Order: identity, bootstrap files, memory, always-on skills,
        requested skills, summary of the remaining skills.
        """
        parts = [self._identity()]

        bootstrap = self._load_bootstrap_files()
        if bootstrap:
            parts.append(bootstrap)

        memory = self.memory.get_memory_context()
        if memory:
            parts.append(f"# Memory\n\n{memory}")

        always_skills = self.skills.get_always_skills()
        if always_skills:
            content = self.skills.load_skills_for_context(always_skills)
            if content:
                parts.append(f"# Active Skills\n\n{content}")

        requested = [n for n in (skill_names or []) if n not in always_skills]
        if requested:
            content = self.skills.load_skills_for_context(requested)
            if content:
                parts.append(f"# Requested Skills\n\n{content}")

        summary = self.skills.build_skills_summary(exclude=always_skills + requested)
        if summary:
            parts.append(
                "# Skills\n\n"
                "The following skills extend your capabilities. To use a skill, "
                "read its SKILL.md file using the read_file tool.\n\n"
                f"{summary}"
            )

        return SECTION_SEPARATOR.join(parts)

    def _identity(self) -> str:
        now = datetime.now().strftime("%Y-%m-%d %H:%M (%A)")
        tz = time.strftime("%Z") or "UTC"
        runtime = f"{platform.system()} {platform.machine()}, Python {platform.python_version()}"
        workspace = str(self.workspace.expanduser().resolve())
        return f"""# tidebot

You are tidebot, a helpful AI assistant.

## Current Time
{now} ({tz})

## Runtime
{runtime}

## Workspace
{workspace}
- Long-term memory: {workspace}/memory/MEMORY.md
- History log: {workspace}/memory/HISTORY.md

IMPORTANT: Respond directly in text for normal chat.
Only use the 'message' tool for proactive channel messages.
Always be helpful, accurate, and concise. When using tools, think step by step: what you know, what you need, and why you chose this tool.
When remembering something, write to {workspace}/memory/MEMORY.md"""

    def _load_bootstrap_files(self) -> str:
        parts = []
        for filename in BOOTSTRAP_FILES:
            path = self.workspace / filename
            if not path.is_file():
                continue
            try:
                parts.append(f"## {filename}\n\n{path.read_text(encoding='utf-8')}")
            except OSError as e:
                logger.warning("Skipping bootstrap file %s: %s", filename, e)
        return "\n\n".join(parts)

    def build_messages(
        self,
        history: list[dict[str, Any]],
        current_message: str,
        skill_names: list[str] | None = None,
        channel: str | None = None,
        chat_id: str | None = None,
        media: list[str | Path] | None = None,
    ) -> list[dict[str, Any]]:
        """Build [system, *history, user] for a new turn."""
        system_prompt = self.build_system_prompt(skill_names)
        if channel and chat_id:
            system_prompt += f"\n\n## Current Session\nChannel: {channel}\nChat ID: {chat_id}"

        return [
            {"role": "system", "content": system_prompt},
            *history,
            {"role": "user", "content": self._build_user_content(current_message, media)},
        ]

    @staticmethod
    def _build_user_content(text: str, media: list[str | Path] | None) -> str | list[dict[str, Any]]:
        """Inline image attachments as data URIs; anything else is dropped."""
        if not media:
            return text

        parts: list[dict[str, Any]] = []
        for path in media:
            p = Path(path)
            mime, _ = mimetypes.guess_type(p.name)
            if not mime or not mime.startswith("image/"):
                continue
            try:
                data = p.read_bytes()
            except OSError:
                continue
            encoded = base64.b64encode(data).decode("ascii")
            parts.append({"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}})

        if not parts:
            return text
        parts.append({"type": "text", "text": text})
        return parts

    @staticmethod
    def add_tool_result(
        messages: list[dict[str, Any]], tool_call_id: str, tool_name: str, result: str
    ) -> list[dict[str, Any]]:
        messages.append(
            {"role": "tool", "tool_call_id": tool_call_id, "name": tool_name, "content": result}
        )
        return messages

    @staticmethod
    def add_assistant_message(
        messages: list[dict[str, Any]],
        content: str | None,
        tool_calls: list[dict[str, Any]] | None = None,
        reasoning_content: str | None = None,
    ) -> list[dict[str, Any]]:
        msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
        if tool_calls:
            msg["tool_calls"] = tool_calls
        if reasoning_content:
            msg["reasoning_content"] = reasoning_content
        messages.append(msg)
        return messages
