import asyncio

from conftest import StubProvider, text, tool_call
from tidebot.agent.loop import AgentLoop
from tidebot.agent.subagent import SubagentManager
from tidebot.bus import InboundMessage
from tidebot.errors import ProviderError


class FailingProvider(StubProvider):
    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7):
        raise ProviderError("upstream down")


async def _wait_idle(manager: SubagentManager) -> None:
    for _ in range(50):
        if manager.get_running_count() == 0:
            return
        await asyncio.sleep(0.01)


async def test_success_publishes_one_system_message(bus, workspace):
    manager = SubagentManager(StubProvider([text("Found 3 papers.")]), workspace, bus)

    ack = await manager.spawn("find papers", label="research", origin_channel="telegram", origin_chat_id="42")
    assert ack.startswith("Subagent [research] started (id: ")

    msg = await bus.consume_inbound(timeout=2)
    assert msg.channel == "system"
    assert msg.sender_id == "subagent"
    assert msg.chat_id == "telegram:42"
    assert "[Subagent 'research' completed successfully]" in msg.content
    assert "Found 3 papers." in msg.content

    await _wait_idle(manager)
    assert manager.get_running_count() == 0
    assert await bus.consume_inbound(timeout=0.05) is None


async def test_failure_still_publishes_one_system_message(bus, workspace):
    manager = SubagentManager(FailingProvider(), workspace, bus)

    await manager.spawn("find papers", origin_channel="cli", origin_chat_id="direct")

    msg = await bus.consume_inbound(timeout=2)
    assert msg.chat_id == "cli:direct"
    assert "failed" in msg.content
    assert "Error: upstream down" in msg.content

    await _wait_idle(manager)
    assert await bus.consume_inbound(timeout=0.05) is None


async def test_long_task_label_is_truncated(bus, workspace):
    manager = SubagentManager(StubProvider([text("ok")]), workspace, bus)

    ack = await manager.spawn("x" * 40)

    assert f"[{'x' * 30}...]" in ack
    await bus.consume_inbound(timeout=2)


async def test_subagent_uses_its_own_tools(bus, workspace):
    provider = StubProvider(
        [tool_call("write_file", {"path": "notes.txt", "content": "hello"}), text("Wrote the notes.")]
    )
    manager = SubagentManager(provider, workspace, bus)

    await manager.spawn("write notes")
    msg = await bus.consume_inbound(timeout=2)

    assert (workspace / "notes.txt").read_text(encoding="utf-8") == "hello"
    assert "Wrote the notes." in msg.content
    offered = {t["function"]["name"] for t in provider.calls[0]["tools"]}
    assert "message" not in offered
    assert "spawn" not in offered


async def test_iteration_cap_reports_no_final_response(bus, workspace):
    provider = StubProvider([tool_call("list_dir", {"path": "."})])
    manager = SubagentManager(provider, workspace, bus, max_iterations=2)

    await manager.spawn("list forever")
    msg = await bus.consume_inbound(timeout=2)

    assert "Task completed but no final response was generated." in msg.content
    assert len(provider.calls) == 2


def test_tool_set_excludes_message_and_spawn(bus, workspace):
    manager = SubagentManager(StubProvider(), workspace, bus)
    names = set(manager._build_tools().tool_names)
    assert names == {"read_file", "write_file", "list_dir", "exec", "web_search", "web_fetch"}


async def test_spawn_tool_announces_back_to_the_originating_chat(bus, workspace):
    provider = StubProvider(
        [
            tool_call("spawn", {"task": "summarize the logs", "label": "logs"}),
            text("I've started that in the background."),
            text("Logs look clean."),
        ]
    )
    loop = AgentLoop(bus=bus, provider=provider, workspace=workspace)
    out = await loop.process_message(
        InboundMessage(channel="telegram", sender_id="7", chat_id="42", content="check logs")
    )
    assert out.content == "I've started that in the background."

    announced = await bus.consume_inbound(timeout=2)
    assert announced.chat_id == "telegram:42"
    assert "Logs look clean." in announced.content
