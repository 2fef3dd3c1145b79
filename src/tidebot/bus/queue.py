"""
Async message bus for decoupling channels from the agent.

Both directions are bounded queues. A full queue suspends the publisher
(backpressure) instead of dropping the message.
"""

import asyncio
import logging
from typing import Self

from tidebot.bus.events import InboundMessage, OutboundMessage
from tidebot.errors import BusClosedError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1024

# Wakes a consumer that is blocked on an empty queue when the bus closes.
_CLOSED = object()


class MessageBus:
    """
    Central message queue with two directions:
    - inbound: channels → agent
    - outbound: agent → channels

    Each queue has a single consumer; consumers are serialized with a lock
    so concurrent callers take turns. Depth counters mirror the queue
    lengths for the health endpoint.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("bus capacity must be positive")
        self.capacity = capacity
        self._inbound: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._outbound: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._inbound_lock = asyncio.Lock()
        self._outbound_lock = asyncio.Lock()
        self._inbound_size = 0
        self._outbound_size = 0
        self._running = False
        self._closed = False
        self._closed_event = asyncio.Event()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """
        Publish a message from a channel to the agent.

        Suspends while the inbound queue is full.

        Raises:
            BusClosedError: if the bus has been stopped.
        """
        self._inbound_size += 1
        try:
            await self._put(self._inbound, msg)
        except BaseException:
            self._inbound_size -= 1
            raise

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        """Publish a message from the agent to channels."""
        self._outbound_size += 1
        try:
            await self._put(self._outbound, msg)
        except BaseException:
            self._outbound_size -= 1
            raise

    async def consume_inbound(self, timeout: float | None = None) -> InboundMessage | None:
        """
        Consume a message from the inbound queue.

        Args:
            timeout: Seconds to wait. None blocks until a message arrives.

        Returns:
            The next message, or None on timeout or once the bus is closed
            and drained.
        """
        async with self._inbound_lock:
            msg = await self._get(self._inbound, timeout)
        if msg is not None:
            self._inbound_size -= 1
        return msg

    async def consume_outbound(self, timeout: float | None = None) -> OutboundMessage | None:
        """Consume a message from the outbound queue (see consume_inbound)."""
        async with self._outbound_lock:
            msg = await self._get(self._outbound, timeout)
        if msg is not None:
            self._outbound_size -= 1
        return msg

    async def _put(self, queue: asyncio.Queue, item) -> None:
        if self._closed:
            raise BusClosedError("message bus is closed")
        if not queue.full():
            queue.put_nowait(item)
            return

        # Full queue: wait for room, but give up as soon as the bus closes.
        put = asyncio.create_task(queue.put(item))
        closing = asyncio.create_task(self._closed_event.wait())
        try:
            await asyncio.wait({put, closing}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closing.cancel()
            if not put.done():
                put.cancel()
        if put.cancelled() or not put.done():
            raise BusClosedError("message bus closed while waiting for room")

    async def _get(self, queue: asyncio.Queue, timeout: float | None):
        if self._closed and queue.empty():
            return None
        try:
            async with asyncio.timeout(timeout):
                item = await queue.get()
        except TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    @property
    def running(self) -> bool:
        return self._running

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def inbound_depth(self) -> int:
        """Number of messages waiting in the inbound queue."""
        return self._inbound_size

    @property
    def outbound_depth(self) -> int:
        """Number of messages waiting in the outbound queue."""
        return self._outbound_size

    def start(self) -> Self:
        """Start the message bus (synchronous)."""
        self._running = True
        return self

    async def stop(self) -> None:
        """
        Close the bus.

        Queued messages can still be drained; after that consumers get None.
        Publishers get BusClosedError, including ones already waiting on a
        full queue.
        """
        self._running = False
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        for queue in (self._inbound, self._outbound):
            if not queue.full():
                queue.put_nowait(_CLOSED)
        logger.debug("Message bus closed")
