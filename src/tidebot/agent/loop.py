"""
Agent loop: the core processing engine.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from tidebot.agent.context import ContextBuilder
from tidebot.agent.subagent import SubagentManager
from tidebot.agent.tools.base import ToolContext
from tidebot.agent.tools.cron import CronTool
from tidebot.agent.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool
from tidebot.agent.tools.http import HttpRequestTool
from tidebot.agent.tools.message import MessageTool
from tidebot.agent.tools.registry import ToolRegistry
from tidebot.agent.tools.shell import ExecTool
from tidebot.agent.tools.spawn import SpawnTool
from tidebot.agent.tools.web import WebFetchTool, WebSearchTool
from tidebot.agent.turn_guard import NoToolsClaimClassifier, PatternClassifier, TurnGuard
from tidebot.bus import InboundMessage, MessageBus, OutboundMessage
from tidebot.config.schema import Config, ExecToolConfig, WebToolsConfig
from tidebot.cron.service import CronService
from tidebot.errors import BusClosedError
from tidebot.memory.sessions import Session, SessionManager
from tidebot.providers.base import LLMProvider

logger = logging.getLogger(__name__)

NO_RESPONSE = "I've completed processing but have no response to give."
BACKGROUND_DONE = "Background task completed."
REFLECT_PROMPT = "Reflect on the results and decide next steps."
RESET_COMMANDS = ("/reset", "/new")

CONSOLIDATION_SYSTEM = "You are a memory consolidation agent. Respond only with valid JSON."
CONSOLIDATION_PROMPT = """You are a memory consolidation agent. Process this conversation and return a JSON object with exactly two keys:

1. "history_entry": A paragraph (2-5 sentences) summarizing the key events/decisions/topics. Start with a timestamp like [{now}]. Include enough detail to be useful when found by grep search later.

2. "memory_update": The updated long-term memory content. Add any new facts: user preferences, personal info, habits, project context, technical decisions, tools/services used. If nothing new, return the existing content unchanged.

## Current Long-term Memory
{current_memory}

## Conversation to Process
{conversation}

Respond with ONLY valid JSON, no markdown fences."""


def split_system_chat_id(chat_id: str) -> tuple[str, str]:
    """Recover (channel, chat_id) from a system message's "channel:chat_id"."""
    channel, sep, origin_chat_id = chat_id.partition(":")
    if not sep:
        return "cli", chat_id
    return channel, origin_chat_id


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse a JSON object, tolerating a surrounding ``` fence."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0].strip()
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class AgentLoop:
    """
    The agent loop is the core processing engine.

    It:
    1. Receives messages from the bus
    2. Builds context from memory, skills and user-only history
    3. Calls the LLM
    4. Executes tool calls, one at a time, in the order requested
    5. Persists the exchange and sends the reply back

    Turns are processed strictly one at a time.
    """

    def __init__(
        self,
        bus: MessageBus,
        provider: LLMProvider,
        workspace: Path,
        model: str | None = None,
        max_iterations: int = 20,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        memory_window: int = 50,
        history_messages: int = 0,
        subagent_max_iterations: int = 15,
        exec_config: ExecToolConfig | None = None,
        web_config: WebToolsConfig | None = None,
        cron_service: CronService | None = None,
        restrict_to_workspace: bool = False,
        session_manager: SessionManager | None = None,
        no_tools_classifier: NoToolsClaimClassifier | None = None,
        builtin_skills_dir: Path | None = None,
    ):
        self.bus = bus
        self.provider = provider
        self.workspace = Path(workspace)
        self.model = model or provider.default_model()
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.memory_window = memory_window
        self.history_messages = history_messages
        self.exec_config = exec_config or ExecToolConfig()
        self.web_config = web_config or WebToolsConfig()
        self.cron_service = cron_service
        self.restrict_to_workspace = restrict_to_workspace
        self.no_tools_classifier = no_tools_classifier or PatternClassifier()

        self.context = ContextBuilder(self.workspace, builtin_skills_dir)
        self.sessions = session_manager or SessionManager(self.workspace)
        self.tools = ToolRegistry()
        self.subagents = SubagentManager(
            provider=provider,
            workspace=self.workspace,
            bus=bus,
            model=self.model,
            max_iterations=subagent_max_iterations,
            temperature=temperature,
            max_tokens=max_tokens,
            exec_config=self.exec_config,
            web_config=self.web_config,
            restrict_to_workspace=restrict_to_workspace,
        )

        self._running = False
        # Held for the whole of a turn. run() and process_direct() callers
        # such as the heartbeat share it.
        self._turn_lock = asyncio.Lock()
        self._register_default_tools()

    @classmethod
    def from_config(
        cls,
        config: Config,
        bus: MessageBus,
        provider: LLMProvider,
        cron_service: CronService | None = None,
    ) -> "AgentLoop":
        agent = config.agent
        return cls(
            bus=bus,
            provider=provider,
            workspace=config.workspace,
            model=agent.model,
            max_iterations=agent.max_iterations,
            max_tokens=agent.max_tokens,
            temperature=agent.temperature,
            memory_window=agent.memory_window,
            history_messages=agent.history_messages,
            subagent_max_iterations=agent.subagent_max_iterations,
            exec_config=config.tools.exec,
            web_config=config.tools.web,
            cron_service=cron_service,
            restrict_to_workspace=config.tools.restrict_to_workspace,
            no_tools_classifier=PatternClassifier(extra_patterns=config.tools.no_tools_patterns),
        )

    def _register_default_tools(self) -> None:
        """Register the default set of tools."""
        allowed_dir = self.workspace if self.restrict_to_workspace else None
        self.tools.register(ReadFileTool(workspace=self.workspace, allowed_dir=allowed_dir))
        self.tools.register(WriteFileTool(workspace=self.workspace, allowed_dir=allowed_dir))
        self.tools.register(EditFileTool(workspace=self.workspace, allowed_dir=allowed_dir))
        self.tools.register(ListDirTool(workspace=self.workspace, allowed_dir=allowed_dir))

        self.tools.register(
            ExecTool(
                timeout=self.exec_config.timeout,
                working_dir=str(self.workspace),
                deny_patterns=self.exec_config.deny_patterns,
                allow_patterns=self.exec_config.allow_patterns,
                restrict_to_workspace=self.restrict_to_workspace,
            )
        )

        self.tools.register(
            WebSearchTool(
                api_key=self.web_config.search_api_key,
                max_results=self.web_config.max_results,
            )
        )
        self.tools.register(WebFetchTool(max_chars=self.web_config.fetch_max_chars))
        self.tools.register(HttpRequestTool(timeout_s=30, max_chars=self.web_config.fetch_max_chars))

        self.tools.register(MessageTool(send_callback=self.bus.publish_outbound))
        self.tools.register(SpawnTool(manager=self.subagents))

        if self.cron_service:
            self.tools.register(CronTool(self.cron_service))

    # -- main loop -----------------------------------------------------------

    async def run(self) -> None:
        """Consume inbound messages until stop() is called or the bus closes."""
        self._running = True
        logger.info("Agent loop started (model: %s)", self.model)

        while self._running:
            msg = await self.bus.consume_inbound(timeout=1.0)
            if msg is None:
                if self.bus.closed:
                    break
                continue

            try:
                response = await self.process_message(msg)
            except Exception as e:
                logger.exception("Error processing message from %s", msg.session_key)
                channel, chat_id = (
                    split_system_chat_id(msg.chat_id) if msg.is_system else (msg.channel, msg.chat_id)
                )
                response = OutboundMessage(
                    channel=channel,
                    chat_id=chat_id,
                    content=f"Sorry, I encountered an error: {e}",
                    metadata=dict(msg.metadata),
                )

            try:
                await self.bus.publish_outbound(response)
            except BusClosedError:
                logger.warning("Bus closed; dropping reply for %s", msg.session_key)
                break

        self._running = False
        logger.info("Agent loop stopped")

    def stop(self) -> None:
        """Ask run() to exit; noticed within one consume timeout."""
        self._running = False

    # -- turns ---------------------------------------------------------------

    async def process_message(
        self, msg: InboundMessage, session_key: str | None = None
    ) -> OutboundMessage:
        """
        Process one inbound message and return the reply.

        Provider errors and session-save errors propagate; tool errors and
        memory consolidation errors do not. Waits for any turn already in
        progress.
        """
        async with self._turn_lock:
            if msg.is_system:
                return await self._process_system_message(msg)
            return await self._process_user_message(msg, session_key)

    async def _process_user_message(
        self, msg: InboundMessage, session_key: str | None
    ) -> OutboundMessage:
        key = session_key or msg.session_key
        logger.info("Processing message from %s", key)
        session = self.sessions.get_or_create(key)

        if msg.content.strip().lower() in RESET_COMMANDS or msg.metadata.get("command") == "reset":
            session.clear()
            self.sessions.save(session)
            return OutboundMessage(
                channel=msg.channel,
                chat_id=msg.chat_id,
                content="Conversation reset.",
                metadata=dict(msg.metadata),
            )

        if len(session.messages) > self.memory_window:
            try:
                await self._consolidate_memory(session)
            except Exception as e:
                logger.warning("Memory consolidation failed for %s: %s", key, e)

        final_content, tools_used = await self._run_turn(
            session, msg.content, msg.channel, msg.chat_id, msg.media
        )
        answer = final_content or NO_RESPONSE

        session.add_message("user", msg.content)
        session.add_message("assistant", answer, tools_used)
        self.sessions.save(session)

        return OutboundMessage(
            channel=msg.channel,
            chat_id=msg.chat_id,
            content=answer,
            metadata=dict(msg.metadata),
        )

    async def process_system_message(self, msg: InboundMessage) -> OutboundMessage:
        """
        Handle a cron/subagent message.

        chat_id carries "origin_channel:origin_chat_id"; the exchange is stored
        in that conversation and the reply goes back there.
        """
        async with self._turn_lock:
            return await self._process_system_message(msg)

    async def _process_system_message(self, msg: InboundMessage) -> OutboundMessage:
        origin_channel, origin_chat_id = split_system_chat_id(msg.chat_id)
        key = f"{origin_channel}:{origin_chat_id}"
        logger.info("Processing system message from %s for %s", msg.sender_id, key)
        session = self.sessions.get_or_create(key)

        final_content, tools_used = await self._run_turn(
            session, msg.content, origin_channel, origin_chat_id, None
        )
        answer = final_content or BACKGROUND_DONE

        session.add_message("user", f"[System: {msg.sender_id}] {msg.content}")
        session.add_message("assistant", answer, tools_used)
        self.sessions.save(session)

        return OutboundMessage(channel=origin_channel, chat_id=origin_chat_id, content=answer)

    def _runtime_facts_message(self) -> dict[str, str]:
        tools_text = ", ".join(sorted(self.tools.tool_names)) or "(none)"
        return {
            "role": "system",
            "content": (
                f"Runtime facts (authoritative): active model is '{self.model}'; "
                f"available tools are: {tools_text}. "
                "If a user asks for external actions (network/file/command/scheduling), "
                "do not claim tools are unavailable; call the matching tool directly. "
                "Focus on the current user message only; do not summarize prior tasks "
                "unless explicitly requested."
            ),
        }

    def _build_turn_messages(
        self,
        history: list[dict[str, Any]],
        content: str,
        channel: str,
        chat_id: str,
        media: list[Path] | None,
    ) -> list[dict[str, Any]]:
        messages = self.context.build_messages(
            history=history,
            current_message=content,
            channel=channel,
            chat_id=chat_id,
            media=media or None,
        )
        messages.insert(1, self._runtime_facts_message())
        return messages

    async def _run_turn(
        self,
        session: Session,
        content: str,
        channel: str,
        chat_id: str,
        media: list[Path] | None,
    ) -> tuple[str | None, list[str]]:
        """
        Run the LLM/tool iteration for one turn.

        Returns:
            (final_content, tool names used). final_content is None when the
            iteration cap was reached without a final answer.
        """
        history = session.get_history(self.history_messages)
        messages = self._build_turn_messages(history, content, channel, chat_id, media)
        guard = TurnGuard(
            model=self.model,
            tool_names=self.tools.tool_names,
            max_iterations=self.max_iterations,
            classifier=self.no_tools_classifier,
        )
        tool_context = ToolContext(channel=channel, chat_id=chat_id)
        tools_used: list[str] = []

        for iteration in range(1, self.max_iterations + 1):
            response = await self.provider.chat(
                messages=messages,
                tools=self.tools.get_definitions(),
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

            if response.has_tool_calls:
                tool_call_dicts = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                        },
                    }
                    for tc in response.tool_calls
                ]
                self.context.add_assistant_message(
                    messages, response.content, tool_call_dicts, response.reasoning_content
                )

                # Sequential on purpose: later calls may depend on earlier side effects.
                for tool_call in response.tool_calls:
                    tools_used.append(tool_call.name)
                    args_str = json.dumps(tool_call.arguments, ensure_ascii=False)
                    logger.info("Tool call: %s(%s)", tool_call.name, args_str[:200])
                    result = await self.tools.execute(
                        tool_call.name, tool_call.arguments, context=tool_context
                    )
                    self.context.add_tool_result(messages, tool_call.id, tool_call.name, result)

                messages.append({"role": "user", "content": REFLECT_PROMPT})
                continue

            if guard.should_retry_after_false_no_tools_claim(response.content, iteration):
                logger.info("Model claimed it has no tools; retrying with fresh context")
                messages = self._build_turn_messages([], content, channel, chat_id, media)
                messages.append(guard.correction_message())
                continue

            if guard.terminal:
                logger.warning("Model repeated the no-tools claim; giving up on this turn")
                return guard.tools_available_response(), tools_used

            return response.content, tools_used

        logger.warning("Max iterations (%d) reached without a final answer", self.max_iterations)
        return None, tools_used

    # -- memory --------------------------------------------------------------

    async def _consolidate_memory(self, session: Session) -> None:
        """
        Fold older messages into MEMORY.md / HISTORY.md and truncate the session.
        """
        memory = self.context.memory
        keep_count = min(10, max(2, self.memory_window // 2))
        if len(session.messages) <= keep_count:
            return

        split_idx = len(session.messages) - keep_count
        lines = []
        for m in session.messages[:split_idx]:
            content = (m.get("content") or "").strip()
            if not content:
                continue
            timestamp = (m.get("timestamp") or "?")[:16]
            role = (m.get("role") or "user").upper()
            tools = m.get("tools_used") or []
            suffix = f" [tools: {', '.join(tools)}]" if tools else ""
            lines.append(f"[{timestamp}] {role}{suffix}: {content}")

        if lines:
            current_memory = memory.read_long_term()
            prompt = CONSOLIDATION_PROMPT.format(
                now=datetime.now().strftime("%Y-%m-%d %H:%M"),
                current_memory=current_memory.strip() or "(empty)",
                conversation="\n".join(lines),
            )
            response = await self.provider.chat(
                messages=[
                    {"role": "system", "content": CONSOLIDATION_SYSTEM},
                    {"role": "user", "content": prompt},
                ],
                model=self.model,
                max_tokens=1200,
                temperature=0.0,
            )
            parsed = extract_json_object(response.content or "")
            if parsed is None:
                raise ValueError("memory consolidation returned non-JSON content")

            entry = parsed.get("history_entry")
            if isinstance(entry, str) and entry.strip():
                memory.append_history(entry)
            update = parsed.get("memory_update")
            if isinstance(update, str) and update.strip() != current_memory.strip():
                memory.write_long_term(update)

        session.messages = session.messages[split_idx:]
        self.sessions.save(session)
        logger.info("Consolidated memory for %s, kept %d messages", session.key, keep_count)

    # -- direct entry point --------------------------------------------------

    async def process_direct(
        self,
        content: str,
        session_key: str = "cli:direct",
        channel: str | None = None,
        chat_id: str | None = None,
    ) -> str:
        """
        Process a prompt without going through the bus.

        Used by the CLI and the heartbeat.
        """
        default_channel, sep, default_chat_id = session_key.partition(":")
        if not sep:
            default_channel, default_chat_id = "cli", "direct"

        msg = InboundMessage(
            channel=channel or default_channel,
            sender_id="user",
            chat_id=chat_id or default_chat_id,
            content=content,
        )
        response = await self.process_message(msg, session_key=session_key)
        return response.content
