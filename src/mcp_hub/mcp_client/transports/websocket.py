"""
MCP transport over a WebSocket with bounded automatic reconnection.
"""
import asyncio
import json
from collections.abc import Mapping
from typing import Any

import aiohttp
import structlog

from ...config import MCPClientConfig
from ..exceptions import MCPConnectionError, MCPTimeoutError
from .base import Transport

logger = structlog.get_logger(__name__)

MAX_RECONNECTS_REASON = "Max reconnection attempts reached"


class WebSocketTransport(Transport):
    """
    One JSON text frame per message. When the socket drops unexpectedly the
    transport reconnects up to ``reconnect_attempts`` times, waiting
    ``reconnect_delay_seconds * attempt`` before each attempt. Messages sent
    while disconnected are queued and flushed once the socket is back.
    """

    kind = "websocket"

    def __init__(
        self,
        name: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        client_config: MCPClientConfig | None = None,
        reconnect_attempts: int = 5,
        reconnect_delay_seconds: float = 1.0,
        session: aiohttp.ClientSession | None = None,
    ):
        super().__init__(name)
        self.url = url
        self.headers = dict(headers or {})
        self.client_config = client_config or MCPClientConfig()
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._run_task: asyncio.Task | None = None
        self._outbox: list[str] = []
        self._closing = False
        self.reconnect_count = 0
        self.logger = self.logger.bind(url=url)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def queued_messages(self) -> int:
        return len(self._outbox)

    async def start(self) -> None:
        if self._started:
            return
        self._ws = await self._connect()
        self._started = True
        self._run_task = asyncio.create_task(self._run(), name=f"mcp-ws-{self.name}")

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None or self._session.closed:
            ssl_context = None if self.client_config.ssl_verify else False
            self._session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=ssl_context))
            self._owns_session = True
        try:
            return await asyncio.wait_for(
                self._session.ws_connect(self.url, headers=self.headers),
                timeout=self.client_config.connect_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise MCPTimeoutError(f"WebSocket connection to {self.url} timed out after {self.client_config.connect_timeout_seconds}s") from e
        except aiohttp.WSServerHandshakeError as e:
            raise MCPConnectionError(f"WebSocket handshake with {self.url} failed: HTTP {e.status} {e.message}") from e
        except aiohttp.ClientError as e:
            raise MCPConnectionError(f"Connection refused by {self.url}: {e}") from e

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise MCPConnectionError(f"Connection closed: WebSocket transport for '{self.name}' is closed")
        if not self._started:
            raise MCPConnectionError(f"WebSocket transport for '{self.name}' is not connected")
        data = json.dumps(message)
        if not self.is_open:
            self.logger.debug("Socket down, queueing message.", method=message.get("method"), queued=len(self._outbox) + 1)
            self._outbox.append(data)
            return
        try:
            await self._ws.send_str(data)
        except ConnectionResetError:
            self._outbox.append(data)

    async def _run(self) -> None:
        while True:
            await self._receive_until_closed(self._ws)
            if self._closing:
                return
            self.logger.warning("WebSocket closed unexpectedly.", close_code=self._ws.close_code if self._ws else None)
            if not await self._reconnect():
                self._outbox.clear()
                await self._close_session()
                self._signal_close(MAX_RECONNECTS_REASON)
                return

    async def _receive_until_closed(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._handle_text(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                self._handle_text(msg.data.decode("utf-8", errors="replace"))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                self._report_error(MCPConnectionError(f"WebSocket error: {ws.exception()}"))

    def _handle_text(self, data: str) -> None:
        try:
            message = json.loads(data)
        except json.JSONDecodeError as e:
            self.logger.warning("Dropping malformed WebSocket frame.", error=str(e), frame=data[:200])
            return
        self._dispatch(message)

    async def _reconnect(self) -> bool:
        for attempt in range(1, self.reconnect_attempts + 1):
            self.reconnect_count = attempt
            delay = self.reconnect_delay_seconds * attempt
            self.logger.info("Reconnecting.", attempt=attempt, max_attempts=self.reconnect_attempts, delay_seconds=delay)
            await asyncio.sleep(delay)
            if self._closing:
                return False
            try:
                self._ws = await self._connect()
            except MCPConnectionError as e:
                self._report_error(e)
                continue
            self.reconnect_count = 0
            await self._flush_outbox()
            self.logger.info("Reconnected.", attempt=attempt)
            return True
        self.logger.error("Giving up on WebSocket.", attempts=self.reconnect_attempts)
        return False

    async def _flush_outbox(self) -> None:
        while self._outbox and self.is_open:
            await self._ws.send_str(self._outbox.pop(0))

    async def close(self) -> None:
        if self._closed:
            return
        self._closing = True
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
        self._run_task = None
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=aiohttp.WSCloseCode.OK)
        self._ws = None
        self._outbox.clear()
        await self._close_session()
        self._signal_close("Transport closed")

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
