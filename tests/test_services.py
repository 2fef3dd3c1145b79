import asyncio
import json

import httpx
import pytest

from conftest import StubProvider, text
from tidebot.agent.loop import AgentLoop
from tidebot.bus import InboundMessage
from tidebot.config import Config, load_config, save_config
from tidebot.errors import ProviderError
from tidebot.health import HealthServer
from tidebot.heartbeat.service import HEARTBEAT_SESSION_KEY, HeartbeatService, is_heartbeat_empty
from tidebot.providers import OpenAIProvider


@pytest.mark.parametrize(
    "content, empty",
    [
        ("", True),
        ("# Tasks\n\n<!-- add tasks below -->\n- [ ]\n", True),
        ("# Tasks\n- [ ] Check the weather in Oslo\n", False),
    ],
)
def test_is_heartbeat_empty(content, empty):
    assert is_heartbeat_empty(content) is empty


async def test_heartbeat_skips_without_tasks(bus, workspace):
    provider = StubProvider([text("HEARTBEAT_OK")])
    service = HeartbeatService(AgentLoop(bus=bus, provider=provider, workspace=workspace))

    assert await service.tick() is None
    (workspace / "HEARTBEAT.md").write_text("# Nothing yet\n", encoding="utf-8")
    assert await service.tick() is None
    assert provider.calls == []


async def test_heartbeat_runs_in_its_own_session(bus, workspace):
    (workspace / "HEARTBEAT.md").write_text("- [ ] Water the plants\n", encoding="utf-8")
    agent = AgentLoop(bus=bus, provider=StubProvider([text("HEARTBEAT_OK")]), workspace=workspace)

    assert await HeartbeatService(agent).tick() == "HEARTBEAT_OK"
    assert len(agent.sessions.get_or_create(HEARTBEAT_SESSION_KEY).messages) == 2


async def test_health_endpoint(bus, workspace):
    agent = AgentLoop(bus=bus, provider=StubProvider(), workspace=workspace)
    await bus.publish_inbound(InboundMessage(channel="cli", sender_id="u", chat_id="1", content="x"))
    server = HealthServer(bus=bus, subagents=agent.subagents, host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        writer.write(b"GET /health HTTP/1.1\r\nHost: localhost\r\n\r\n")
        await writer.drain()
        raw = await reader.read()
        writer.close()
    finally:
        await server.stop()

    head, _, body = raw.decode().partition("\r\n\r\n")
    assert head.startswith("HTTP/1.1 200 OK")
    payload = json.loads(body)
    assert payload["status"] == "ok"
    assert payload["queues"] == {"inbound": 1, "outbound": 0}
    assert payload["subagents"] == 0


async def test_health_unknown_path(bus):
    server = HealthServer(bus=bus, host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        writer.write(b"GET /metrics HTTP/1.1\r\n\r\n")
        await writer.drain()
        raw = await reader.read()
        writer.close()
    finally:
        await server.stop()

    assert raw.startswith(b"HTTP/1.1 404 Not Found")


def _provider(handler) -> OpenAIProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIProvider(api_key="sk-test", api_base="https://llm.test/v1/", client=client)


async def test_provider_parses_tool_calls():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "finish_reason": "tool_calls",
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {"name": "exec", "arguments": '{"command": "ls"}'},
                                }
                            ],
                        },
                    }
                ],
                "usage": {"total_tokens": 12},
            },
        )

    provider = _provider(handler)
    tools = [{"type": "function", "function": {"name": "exec", "parameters": {}}}]
    response = await provider.chat([{"role": "user", "content": "list"}], tools=tools, model="m1")

    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "m1"
    assert seen["body"]["tools"] == tools
    assert response.has_tool_calls
    assert response.tool_calls[0].name == "exec"
    assert response.tool_calls[0].arguments == {"command": "ls"}
    await provider.aclose()


async def test_provider_plain_answer_without_tools():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "tools" not in json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "4"}}]})

    response = await _provider(handler).chat([{"role": "user", "content": "2+2"}])

    assert response.content == "4"
    assert not response.has_tool_calls


async def test_provider_http_error_raises():
    provider = _provider(lambda request: httpx.Response(500, text="overloaded"))
    with pytest.raises(ProviderError, match="500"):
        await provider.chat([{"role": "user", "content": "hi"}])


def test_config_round_trip(tmp_path):
    path = tmp_path / "config.json"
    config = Config()
    config.agent.model = "local-model"
    config.channels.telegram.allow_from = ["7"]
    save_config(config, path)

    loaded = load_config(path)

    assert loaded.agent.model == "local-model"
    assert loaded.channels.telegram.allow_from == ["7"]
    assert loaded.workspace.is_absolute()


def test_config_defaults_when_missing(tmp_path):
    config = load_config(tmp_path / "missing.json")
    assert config.agent.history_messages == 0
    assert config.agent.max_iterations == 20
    assert config.bus.capacity == 1024


def test_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("TIDEBOT_PROVIDER__API_KEY", "sk-env")
    assert load_config(tmp_path / "missing.json").provider.api_key == "sk-env"
