"""
Background subagents.

A subagent is a smaller run of the same tool-calling protocol with its own
tool registry. It cannot message users or spawn further subagents; its
outcome is announced on the bus as a system message, which the main loop
then turns into a reply for the originating chat.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any

from tidebot.agent.tools.filesystem import ListDirTool, ReadFileTool, WriteFileTool
from tidebot.agent.tools.registry import ToolRegistry
from tidebot.agent.tools.shell import ExecTool
from tidebot.agent.tools.web import WebFetchTool, WebSearchTool
from tidebot.bus import InboundMessage, MessageBus
from tidebot.bus.events import SYSTEM_CHANNEL
from tidebot.config.schema import ExecToolConfig, WebToolsConfig
from tidebot.providers.base import LLMProvider

logger = logging.getLogger(__name__)

SUBAGENT_MAX_ITERATIONS = 15

SUBAGENT_PROMPT = """# Subagent

You are a subagent spawned by the main agent to complete a specific task.

## Your Task
{task}

## Rules
1. Stay focused - complete only the assigned task, nothing else
2. Your final response will be reported back to the main agent
3. Do not initiate conversations or take on side tasks
4. Be concise but informative in your findings

## What You Can Do
- Read and write files in the workspace
- Execute shell commands
- Search the web and fetch web pages

## What You Cannot Do
- Send messages directly to users
- Spawn other subagents

## Workspace
{workspace}
"""

ANNOUNCE_TEMPLATE = """[Subagent '{label}' {status}]

Task: {task}

Result:
{result}

Summarize this naturally for the user. Keep it brief (1-2 sentences). Do not mention technical details like "subagent" or task IDs."""


class SubagentManager:
    """Spawns and tracks background subagent tasks."""

    def __init__(
        self,
        provider: LLMProvider,
        workspace: Path,
        bus: MessageBus,
        model: str | None = None,
        max_iterations: int = SUBAGENT_MAX_ITERATIONS,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        exec_config: ExecToolConfig | None = None,
        web_config: WebToolsConfig | None = None,
        restrict_to_workspace: bool = False,
    ):
        self.provider = provider
        self.workspace = Path(workspace)
        self.bus = bus
        self.model = model or provider.default_model()
        self.max_iterations = max_iterations
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.exec_config = exec_config or ExecToolConfig()
        self.web_config = web_config or WebToolsConfig()
        self.restrict_to_workspace = restrict_to_workspace
        self._running_tasks: dict[str, asyncio.Task[None]] = {}

    async def spawn(
        self,
        task: str,
        label: str | None = None,
        origin_channel: str = "cli",
        origin_chat_id: str = "direct",
    ) -> str:
        """
        Start a subagent in the background and return immediately.

        Returns:
            Acknowledgement text for the calling model.
        """
        task_id = uuid.uuid4().hex[:8]
        display_label = label or (task[:30] + "..." if len(task) > 30 else task)

        bg_task = asyncio.create_task(
            self._run_subagent(task_id, task, display_label, origin_channel, origin_chat_id),
            name=f"subagent-{task_id}",
        )
        self._running_tasks[task_id] = bg_task
        bg_task.add_done_callback(lambda _: self._running_tasks.pop(task_id, None))

        logger.info("Spawned subagent [%s]: %s", task_id, display_label)
        return f"Subagent [{display_label}] started (id: {task_id}). I'll notify you when it completes."

    def get_running_count(self) -> int:
        return len(self._running_tasks)

    def _build_tools(self) -> ToolRegistry:
        """A fresh registry per subagent; never shared with anyone else."""
        tools = ToolRegistry()
        allowed_dir = self.workspace if self.restrict_to_workspace else None
        tools.register(ReadFileTool(workspace=self.workspace, allowed_dir=allowed_dir))
        tools.register(WriteFileTool(workspace=self.workspace, allowed_dir=allowed_dir))
        tools.register(ListDirTool(workspace=self.workspace, allowed_dir=allowed_dir))
        tools.register(
            ExecTool(
                timeout=self.exec_config.timeout,
                working_dir=str(self.workspace),
                deny_patterns=self.exec_config.deny_patterns,
                allow_patterns=self.exec_config.allow_patterns,
                restrict_to_workspace=self.restrict_to_workspace,
            )
        )
        tools.register(
            WebSearchTool(
                api_key=self.web_config.search_api_key,
                max_results=self.web_config.max_results,
            )
        )
        tools.register(WebFetchTool(max_chars=self.web_config.fetch_max_chars))
        return tools

    async def _run_subagent(
        self,
        task_id: str,
        task: str,
        label: str,
        origin_channel: str,
        origin_chat_id: str,
    ) -> None:
        try:
            result = await self._execute_task(task)
            status = "completed successfully"
            logger.info("Subagent [%s] completed", task_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result = f"Error: {e}"
            status = "failed"
            logger.exception("Subagent [%s] failed", task_id)

        await self._announce_result(label, task, result, status, origin_channel, origin_chat_id)

    async def _execute_task(self, task: str) -> str:
        tools = self._build_tools()
        messages: list[dict[str, Any]] = [
            {
                "role": "system",
                "content": SUBAGENT_PROMPT.format(task=task, workspace=self.workspace),
            },
            {"role": "user", "content": task},
        ]

        for _ in range(self.max_iterations):
            response = await self.provider.chat(
                messages=messages,
                tools=tools.get_definitions(),
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

            if not response.has_tool_calls:
                if response.content:
                    return response.content
                break

            messages.append(
                {
                    "role": "assistant",
                    "content": response.content or "",
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                            },
                        }
                        for tc in response.tool_calls
                    ],
                }
            )
            for tc in response.tool_calls:
                result = await tools.execute(tc.name, tc.arguments)
                messages.append(
                    {"role": "tool", "tool_call_id": tc.id, "name": tc.name, "content": result}
                )

        return "Task completed but no final response was generated."

    async def _announce_result(
        self,
        label: str,
        task: str,
        result: str,
        status: str,
        origin_channel: str,
        origin_chat_id: str,
    ) -> None:
        """Publish the single completion message back onto the bus."""
        content = ANNOUNCE_TEMPLATE.format(label=label, status=status, task=task, result=result)
        try:
            await self.bus.publish_inbound(
                InboundMessage(
                    channel=SYSTEM_CHANNEL,
                    sender_id="subagent",
                    chat_id=f"{origin_channel}:{origin_chat_id}",
                    content=content,
                )
            )
        except Exception:
            logger.exception("Could not announce subagent result for %s:%s", origin_channel, origin_chat_id)
