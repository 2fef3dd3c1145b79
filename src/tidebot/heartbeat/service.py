"""
Heartbeat service: periodic wake-up for proactive tasks.

Checks HEARTBEAT.md and prompts the agent to follow its instructions.
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tidebot.agent.loop import AgentLoop

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL_S = 30 * 60
HEARTBEAT_SESSION_KEY = "heartbeat:system"
HEARTBEAT_OK = "HEARTBEAT_OK"

HEARTBEAT_PROMPT = """Check HEARTBEAT.md in your workspace and complete any tasks listed there.

For each unchecked task:
- Read the task description
- Use your tools to complete the task
- Mark it as done by editing HEARTBEAT.md to remove the task or check it off

If all tasks are complete or there are no tasks, reply with just: HEARTBEAT_OK"""


def is_heartbeat_empty(content: str | None) -> bool:
    """
    True if HEARTBEAT.md has nothing actionable.

    Blank lines, headings, HTML comments and bare checkboxes do not count.
    """
    if not content or not content.strip():
        return True

    for line in content.strip().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("<!--"):
            continue
        if stripped in ("- [ ]", "* [ ]", "- [x]", "* [x]"):
            continue
        return False

    return True


class HeartbeatService:
    """
    Periodic wake-up service.

    Every interval:
    1. Reads HEARTBEAT.md from the workspace
    2. If it has actionable content, hands the agent a prompt
    3. An answer of "HEARTBEAT_OK" means nothing needed doing
    """

    def __init__(
        self,
        agent: "AgentLoop",
        workspace: Path | None = None,
        interval_s: int = DEFAULT_HEARTBEAT_INTERVAL_S,
    ):
        self.agent = agent
        self.workspace = Path(workspace or agent.workspace)
        self.heartbeat_path = self.workspace / "HEARTBEAT.md"
        self.interval_s = interval_s
        self._running = False
        self._task: asyncio.Task[None] | None = None

    async def tick(self) -> str | None:
        """
        Run one heartbeat check.

        Returns:
            The agent's answer, or None if there was nothing to do.
        """
        if not self.heartbeat_path.exists():
            return None
        content = self.heartbeat_path.read_text(encoding="utf-8")
        if is_heartbeat_empty(content):
            return None

        response = await self.agent.process_direct(
            HEARTBEAT_PROMPT, session_key=HEARTBEAT_SESSION_KEY
        )
        if HEARTBEAT_OK in response:
            logger.debug("Heartbeat: nothing to do")
        else:
            logger.info("Heartbeat completed: %s", response[:200])
        return response

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_s)
            if not self._running:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception("Heartbeat failed")

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
