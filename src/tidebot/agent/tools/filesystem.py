"""File tools: read, write, edit, list."""

import asyncio
import os
from pathlib import Path
from typing import Any

from tidebot.agent.tools.base import Tool
from tidebot.errors import ToolError


def resolve_path(path: str, workspace: Path | None = None, allowed_dir: Path | None = None) -> Path:
    """
    Resolve a user-supplied path.

    Relative paths are taken relative to the workspace. With allowed_dir
    set, anything that normalizes outside of it is rejected.
    """
    p = Path(path).expanduser()
    if not p.is_absolute() and workspace is not None:
        p = workspace / p
    resolved = Path(os.path.normpath(p.absolute()))
    if allowed_dir is not None:
        allowed = Path(os.path.normpath(Path(allowed_dir).absolute()))
        if resolved != allowed and allowed not in resolved.parents:
            raise ToolError(f"Path {path} is outside allowed directory {allowed}")
    return resolved


class _FileTool(Tool):
    def __init__(self, workspace: Path | None = None, allowed_dir: Path | None = None):
        self._workspace = workspace
        self._allowed_dir = allowed_dir

    def _resolve(self, path: str) -> Path:
        return resolve_path(path, self._workspace, self._allowed_dir)


class ReadFileTool(_FileTool):
    name = "read_file"
    description = "Read the contents of a file at the given path."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to read"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str, **kwargs: Any) -> str:
        file_path = self._resolve(path)
        if not file_path.exists():
            return f"Error: File not found: {path}"
        if not file_path.is_file():
            return f"Error: Not a file: {path}"
        return await asyncio.to_thread(file_path.read_text, encoding="utf-8")


class WriteFileTool(_FileTool):
    name = "write_file"
    description = "Write content to a file at the given path. Creates parent directories if needed."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to write to"},
            "content": {"type": "string", "description": "The content to write"},
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str, content: str, **kwargs: Any) -> str:
        file_path = self._resolve(path)

        def _write() -> None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        return f"Successfully wrote {len(content)} bytes to {path}"


class EditFileTool(_FileTool):
    name = "edit_file"
    description = (
        "Edit a file by replacing old_text with new_text. old_text must appear exactly once."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to edit"},
            "old_text": {"type": "string", "description": "The exact text to find and replace"},
            "new_text": {"type": "string", "description": "The replacement text"},
        },
        "required": ["path", "old_text", "new_text"],
    }

    async def execute(self, path: str, old_text: str, new_text: str, **kwargs: Any) -> str:
        file_path = self._resolve(path)
        if not file_path.exists():
            return f"Error: File not found: {path}"

        content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        count = content.count(old_text)
        if count == 0:
            return "Error: old_text not found in file. Make sure it matches exactly."
        if count > 1:
            return (
                f"Warning: old_text appears {count} times. "
                "Please provide more context to make it unique."
            )

        await asyncio.to_thread(
            file_path.write_text, content.replace(old_text, new_text, 1), encoding="utf-8"
        )
        return f"Successfully edited {path}"


class ListDirTool(_FileTool):
    name = "list_dir"
    description = "List the contents of a directory."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The directory path to list"},
        },
        "required": ["path"],
    }

    async def execute(self, path: str, **kwargs: Any) -> str:
        dir_path = self._resolve(path)
        if not dir_path.exists():
            return f"Error: Directory not found: {path}"
        if not dir_path.is_dir():
            return f"Error: Not a directory: {path}"

        items = sorted(
            f"{'[DIR]' if entry.is_dir() else '[FILE]'} {entry.name}"
            for entry in dir_path.iterdir()
        )
        if not items:
            return f"Directory {path} is empty"
        return "\n".join(items)
