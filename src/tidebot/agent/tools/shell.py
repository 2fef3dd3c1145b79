"""Shell execution tool with a pattern-based safety guard."""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any

from tidebot.agent.tools.base import Tool

logger = logging.getLogger(__name__)

DEFAULT_DENY_PATTERNS = [
    r"\brm\s+-[rf]{1,2}\b",
    r"\bdel\s+/[fq]\b",
    r"\brmdir\s+/s\b",
    r"\b(format|mkfs|diskpart)\b",
    r"\bdd\s+if=",
    r">\s*/dev/sd",
    r"\b(shutdown|reboot|poweroff)\b",
    r":\(\)\s*\{.*\};\s*:",
]

MAX_OUTPUT_CHARS = 10_000


class ExecTool(Tool):
    name = "exec"
    description = "Execute a shell command and return its output. Use with caution."
    parameters = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "working_dir": {
                "type": "string",
                "description": "Optional working directory for the command",
            },
        },
        "required": ["command"],
    }

    def __init__(
        self,
        timeout: int = 60,
        working_dir: str | None = None,
        deny_patterns: list[str] | None = None,
        allow_patterns: list[str] | None = None,
        restrict_to_workspace: bool = False,
    ):
        self.timeout = timeout
        self.working_dir = working_dir
        self.deny_patterns = DEFAULT_DENY_PATTERNS if deny_patterns is None else deny_patterns
        self.allow_patterns = allow_patterns or []
        self.restrict_to_workspace = restrict_to_workspace

    def _guard_command(self, command: str, cwd: str) -> str | None:
        """Return an error message if the command must not run."""
        lower = command.strip().lower()

        for pattern in self.deny_patterns:
            if re.search(pattern, lower):
                return "Error: Command blocked by safety guard (dangerous pattern detected)"

        if self.allow_patterns and not any(re.search(p, lower) for p in self.allow_patterns):
            return "Error: Command blocked by safety guard (not in allowlist)"

        if self.restrict_to_workspace:
            if "../" in command or "..\\" in command:
                return "Error: Command blocked by safety guard (path traversal detected)"

            root = Path(os.path.normpath(Path(cwd).absolute()))
            win_paths = re.findall(r"[A-Za-z]:\\[^\\\"'\s]+", command)
            posix_paths = re.findall(r"(?:^|[\s=])(/[^\s\"']+)", command)
            for raw in win_paths + posix_paths:
                p = Path(os.path.normpath(raw))
                if p != root and root not in p.parents:
                    return "Error: Command blocked by safety guard (path outside working dir)"

        return None

    async def execute(self, command: str, working_dir: str | None = None, **kwargs: Any) -> str:
        cwd = working_dir or self.working_dir or os.getcwd()
        guard_error = self._guard_command(command, cwd)
        if guard_error:
            return guard_error

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return f"Error: Command timed out after {self.timeout} seconds"

        output_parts = []
        if stdout:
            output_parts.append(stdout.decode("utf-8", errors="replace"))
        stderr_text = stderr.decode("utf-8", errors="replace") if stderr else ""
        if stderr_text.strip():
            output_parts.append(f"STDERR:\n{stderr_text}")
        if process.returncode != 0:
            output_parts.append(f"\nExit code: {process.returncode}")

        result = "\n".join(output_parts) if output_parts else "(no output)"
        if len(result) > MAX_OUTPUT_CHARS:
            extra = len(result) - MAX_OUTPUT_CHARS
            result = f"{result[:MAX_OUTPUT_CHARS]}\n... (truncated, {extra} more chars)"
        return result
