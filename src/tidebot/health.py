"""
Lightweight HTTP health endpoint for gateway monitoring.

Uses raw asyncio streams; GET /health is the only route.
"""

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any

from tidebot.bus import MessageBus

if TYPE_CHECKING:
    from tidebot.agent.subagent import SubagentManager
    from tidebot.channels.manager import ChannelManager

logger = logging.getLogger(__name__)


def _http_response(status: str, body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + payload


class HealthServer:
    """
    Minimal HTTP server exposing GET /health.

    Response includes:
    - status: "ok" or "degraded" (a channel is down)
    - uptime_s: seconds since the server started
    - channels: per-channel running status
    - queues: inbound/outbound depth counters
    - subagents: number of running background subagents
    """

    def __init__(
        self,
        bus: MessageBus | None = None,
        channels: "ChannelManager | None" = None,
        subagents: "SubagentManager | None" = None,
        host: str = "0.0.0.0",
        port: int = 18790,
    ):
        self._bus = bus
        self._channels = channels
        self._subagents = subagents
        self.host = host
        self.port = port
        self._start_time = time.monotonic()
        self._server: asyncio.Server | None = None

    def build_health(self) -> dict[str, Any]:
        channel_status = self._channels.get_status() if self._channels else {}
        all_ok = all(ch.get("running", False) for ch in channel_status.values())

        queues = {}
        if self._bus:
            queues = {"inbound": self._bus.inbound_depth, "outbound": self._bus.outbound_depth}

        return {
            "status": "ok" if all_ok else "degraded",
            "uptime_s": round(time.monotonic() - self._start_time, 1),
            "channels": channel_status,
            "queues": queues,
            "subagents": self._subagents.get_running_count() if self._subagents else 0,
        }

    async def _handle_request(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            request_line = await asyncio.wait_for(reader.readline(), timeout=5)
            request = request_line.decode("utf-8", errors="replace").strip()

            # Drain headers
            while True:
                line = await asyncio.wait_for(reader.readline(), timeout=5)
                if line in (b"\r\n", b"\n", b""):
                    break

            method, _, rest = request.partition(" ")
            path = rest.split(" ", 1)[0].split("?", 1)[0]
            if method == "GET" and path == "/health":
                response = _http_response("200 OK", json.dumps(self.build_health(), indent=2))
            else:
                response = _http_response("404 Not Found", '{"error": "Not found"}')

            writer.write(response)
            await writer.drain()
        except (asyncio.TimeoutError, ConnectionError) as e:
            logger.debug("Health request aborted: %s", e)
        finally:
            writer.close()

    async def start(self) -> None:
        """Bind the server; requests are served in the background."""
        self._start_time = time.monotonic()
        self._server = await asyncio.start_server(self._handle_request, self.host, self.port)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info("Health endpoint listening on http://%s:%d/health", self.host, self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
