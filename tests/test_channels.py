import asyncio
import json

import pytest

from tidebot.bus import OutboundMessage
from tidebot.channels import BaseChannel, ChannelManager, is_allowed_sender
from tidebot.channels.telegram import chunk_message
from tidebot.config import Config, save_config
from tidebot.pairing import PairingStore, pairing_prompt


class FakeChannel(BaseChannel):
    def __init__(self, name, bus, config, pairing=None, fail_send=False):
        super().__init__(name, bus, config, pairing)
        self.sent: list[OutboundMessage] = []
        self.fail_send = fail_send

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send(self, msg: OutboundMessage) -> None:
        if self.fail_send:
            raise RuntimeError("platform down")
        self.sent.append(msg)


@pytest.fixture
def pairing(tmp_path) -> PairingStore:
    return PairingStore(path=tmp_path / "pairing" / "pending.json", config_path=tmp_path / "config.json")


def test_is_allowed_sender():
    assert is_allowed_sender("1", [])
    assert is_allowed_sender("1", ["1"])
    assert is_allowed_sender("1|alice", ["alice"])
    assert not is_allowed_sender("2|bob", ["alice"])
    assert not is_allowed_sender("2", ["1"])


async def test_allowed_sender_reaches_the_bus(bus, pairing):
    channel = FakeChannel("telegram", bus, {"allow_from": ["7"]}, pairing)

    await channel.handle_message("7", "42", "hello", metadata={"update_id": 1})

    msg = await bus.consume_inbound(timeout=1)
    assert (msg.channel, msg.sender_id, msg.chat_id, msg.content) == ("telegram", "7", "42", "hello")
    assert msg.metadata == {"update_id": 1}


async def test_unknown_sender_gets_pairing_prompt(bus, pairing):
    channel = FakeChannel("telegram", bus, {"allow_from": ["7"]}, pairing)

    await channel.handle_message("99", "99", "let me in")
    await channel.handle_message("99", "99", "please")

    assert bus.inbound_depth == 0
    first = await bus.consume_outbound(timeout=1)
    second = await bus.consume_outbound(timeout=1)
    assert first.content.startswith("Access requires pairing.")
    assert second.content.startswith("Pairing pending.")
    code = pairing.list_pending()[0].code
    assert f"Code: {code}" in first.content
    assert pairing.list_pending()[0].request_count == 2


def test_pairing_approve_updates_allow_list(pairing, tmp_path):
    save_config(Config(), tmp_path / "config.json")
    issue = pairing.issue("telegram", "99", "99")

    approved = pairing.approve("telegram", issue.code.lower())

    assert approved.sender_id == "99"
    saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert saved["channels"]["telegram"]["allow_from"] == ["99"]
    assert pairing.list_pending() == []


def test_pairing_approve_unknown_code(pairing):
    with pytest.raises(KeyError):
        pairing.approve("telegram", "ZZZZZZ")


def test_pairing_approve_unsupported_channel(pairing):
    issue = pairing.issue("carrier-pigeon", "1", "1")
    with pytest.raises(ValueError):
        pairing.approve("carrier-pigeon", issue.code)


def test_pairing_reject(pairing):
    issue = pairing.issue("telegram", "99", "99")
    assert pairing.reject("telegram", issue.code) is True
    assert pairing.reject("telegram", issue.code) is False


def test_expired_requests_are_dropped(pairing):
    pairing.issue("telegram", "99", "99")
    raw = json.loads(pairing.path.read_text(encoding="utf-8"))
    raw["pending"][0]["last_seen_at_ms"] = 0
    pairing.path.write_text(json.dumps(raw), encoding="utf-8")

    assert pairing.list_pending() == []


def test_pairing_rejects_empty_ids(pairing):
    with pytest.raises(ValueError):
        pairing.issue("telegram", " ", "1")


def test_pairing_prompt_names_the_command(pairing):
    issue = pairing.issue("telegram", "5", "5")
    assert f"tidebot pairing approve <channel> {issue.code}" in pairing_prompt(issue)
    assert len(issue.code) == 6


async def test_manager_dispatches_to_named_channel(bus, pairing):
    manager = ChannelManager(bus)
    channel = FakeChannel("telegram", bus, {}, pairing)
    manager.add_channel(channel)

    assert await manager.dispatch(OutboundMessage(channel="telegram", chat_id="42", content="hi"))
    assert not await manager.dispatch(OutboundMessage(channel="discord", chat_id="1", content="x"))
    assert [m.content for m in channel.sent] == ["hi"]


async def test_manager_send_failure_is_contained(bus, pairing):
    manager = ChannelManager(bus)
    manager.add_channel(FakeChannel("telegram", bus, {}, pairing, fail_send=True))

    assert not await manager.dispatch(OutboundMessage(channel="telegram", chat_id="42", content="hi"))


async def test_manager_lifecycle(bus, pairing):
    manager = ChannelManager(bus)
    manager.init_channel("off", FakeChannel, {"enabled": False})
    manager.init_channel("on", FakeChannel, {"enabled": True})
    assert list(manager.channels) == ["on"]

    await manager.start_all()
    assert manager.get_status() == {"on": {"running": True, "type": "FakeChannel"}}

    await bus.publish_outbound(OutboundMessage(channel="on", chat_id="1", content="queued"))
    for _ in range(100):
        if manager.channels["on"].sent:
            break
        await asyncio.sleep(0.01)

    await manager.stop_all()
    assert [m.content for m in manager.channels["on"].sent] == ["queued"]
    assert manager.get_status()["on"]["running"] is False


def test_chunk_message_respects_limit():
    paragraph = "word " * 300
    text = "\n\n".join([paragraph] * 5)

    chunks = chunk_message(text, limit=1000)

    assert all(len(c) <= 1000 for c in chunks)
    assert "".join(c.replace(" ", "").replace("\n", "") for c in chunks) == text.replace(" ", "").replace("\n", "")


def test_short_message_is_one_chunk():
    assert chunk_message("hi") == ["hi"]


def test_manager_passes_pairing_store_to_channels(bus, pairing):
    manager = ChannelManager(bus, pairing=pairing)
    manager.init_channel("on", FakeChannel, {"enabled": True})

    assert manager.channels["on"].pairing is pairing
