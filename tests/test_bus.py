import asyncio

import pytest

from tidebot.bus import InboundMessage, MessageBus, OutboundMessage
from tidebot.errors import BusClosedError


def _inbound(n: int) -> InboundMessage:
    return InboundMessage(channel="telegram", sender_id="u", chat_id="42", content=f"m{n}")


async def test_fifo_order_and_depth_drains_to_zero(bus):
    for i in range(5):
        await bus.publish_inbound(_inbound(i))
    assert bus.inbound_depth == 5

    received = [await bus.consume_inbound() for _ in range(5)]

    assert [m.content for m in received] == ["m0", "m1", "m2", "m3", "m4"]
    assert bus.inbound_depth == 0
    assert bus.outbound_depth == 0


async def test_consume_times_out_with_none(bus):
    assert await bus.consume_inbound(timeout=0.01) is None
    assert await bus.consume_outbound(timeout=0.01) is None


async def test_full_queue_applies_backpressure():
    bus = MessageBus(capacity=1).start()
    await bus.publish_outbound(OutboundMessage(channel="cli", chat_id="1", content="a"))

    blocked = asyncio.create_task(
        bus.publish_outbound(OutboundMessage(channel="cli", chat_id="1", content="b"))
    )
    await asyncio.sleep(0.01)
    assert not blocked.done()

    first = await bus.consume_outbound()
    await asyncio.wait_for(blocked, timeout=1)
    second = await bus.consume_outbound()

    assert (first.content, second.content) == ("a", "b")
    assert bus.outbound_depth == 0


async def test_cancelled_publish_rolls_back_depth():
    bus = MessageBus(capacity=1).start()
    await bus.publish_inbound(_inbound(0))

    blocked = asyncio.create_task(bus.publish_inbound(_inbound(1)))
    await asyncio.sleep(0.01)
    blocked.cancel()
    with pytest.raises(asyncio.CancelledError):
        await blocked

    assert bus.inbound_depth == 1


async def test_stop_wakes_blocked_consumer(bus):
    waiter = asyncio.create_task(bus.consume_inbound())
    await asyncio.sleep(0.01)

    await bus.stop()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert bus.closed


async def test_publish_after_stop_raises(bus):
    await bus.stop()
    with pytest.raises(BusClosedError):
        await bus.publish_inbound(_inbound(0))
    assert bus.inbound_depth == 0


async def test_stop_fails_a_publisher_waiting_for_room():
    bus = MessageBus(capacity=1).start()
    await bus.publish_inbound(_inbound(0))
    blocked = asyncio.create_task(bus.publish_inbound(_inbound(1)))
    await asyncio.sleep(0.01)

    await bus.stop()

    with pytest.raises(BusClosedError):
        await asyncio.wait_for(blocked, timeout=1)
    assert bus.inbound_depth == 1

    first = await bus.consume_inbound(timeout=0.1)
    assert first.content == "m0"
    assert await bus.consume_inbound(timeout=0.1) is None
    assert bus.inbound_depth == 0


async def test_queued_messages_drain_after_stop(bus):
    await bus.publish_inbound(_inbound(0))
    await bus.stop()

    msg = await bus.consume_inbound(timeout=0.1)
    assert msg is not None and msg.content == "m0"
    assert await bus.consume_inbound(timeout=0.1) is None


def test_session_key_and_system_flag():
    msg = InboundMessage(channel="system", sender_id="cron", chat_id="telegram:42", content="x")
    assert msg.session_key == "system:telegram:42"
    assert msg.is_system
    assert not _inbound(0).is_system


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        MessageBus(capacity=0)
