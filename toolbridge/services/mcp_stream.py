"""Server-Sent Events session for a merchant's MCP server."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from toolbridge.infra.config import config
from toolbridge.infra.metrics import active_streams
from toolbridge.services.mcp_protocol import MCPProtocolServer
from toolbridge.services.tool_registry import get_merchant_or_raise

logger = logging.getLogger(__name__)

CONNECTED_COMMENT = ": MCP Stream Connected\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_CLOSED = object()


class StreamState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


class MCPStreamSession:
    """
    One event stream: a connected comment, ``server-info``, ``tools-list``,
    then a ``heartbeat`` every interval until closed.

    Frames go through a queue consumed by ``frames()``. ``close()`` cancels the
    heartbeat task; nothing is yielded after it.
    """

    def __init__(
        self,
        protocol_server: MCPProtocolServer,
        merchant_id: str,
        heartbeat_interval: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.protocol_server = protocol_server
        self.merchant_id = merchant_id
        self.heartbeat_interval = heartbeat_interval or config.MCP_HEARTBEAT_INTERVAL
        self._sleep = sleep
        self._queue: asyncio.Queue = asyncio.Queue()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self.state = StreamState.CONNECTING

    def _put(self, frame: str) -> None:
        if self.state is StreamState.STREAMING:
            self._queue.put_nowait(frame)

    async def open(self) -> None:
        """
        Start streaming.

        Raises:
            MerchantNotFoundError: unknown merchant, before anything is queued
        """
        if self.state is not StreamState.CONNECTING:
            raise RuntimeError(f"Stream already {self.state.value}")

        server_info = self.protocol_server.initialize(self.merchant_id)
        tools = self.protocol_server.tools_list(self.merchant_id)
        merchant = get_merchant_or_raise(self.protocol_server.store, self.merchant_id)
        server_info["merchant"] = {"id": merchant.id, "name": merchant.name, "slug": merchant.slug}

        self.state = StreamState.STREAMING
        active_streams.inc()
        self._put(CONNECTED_COMMENT)
        self._put(format_event("server-info", server_info))
        self._put(format_event("tools-list", tools))
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        logger.info(
            "MCP stream opened",
            extra={"merchant_id": self.merchant_id, "tools_count": len(tools["tools"])},
        )

    async def _heartbeat(self) -> None:
        while self.state is StreamState.STREAMING:
            await self._sleep(self.heartbeat_interval)
            self._put(format_event("heartbeat", {"timestamp": datetime.now(timezone.utc).isoformat()}))

    def close(self) -> None:
        if self.state is StreamState.CLOSED:
            return
        was_streaming = self.state is StreamState.STREAMING
        self.state = StreamState.CLOSED
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._queue.put_nowait(_CLOSED)
        if was_streaming:
            active_streams.dec()
            logger.info("MCP stream closed", extra={"merchant_id": self.merchant_id})

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is _CLOSED or self.state is StreamState.CLOSED:
                return
            yield frame
