"""
Builds a connected MCP session for a server configuration, walking the HTTP
fallback chain when the configuration asks for plain ``http``.
"""
import asyncio
import fnmatch
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from urllib.parse import urlparse

import structlog

from ..config import MCPClientConfig, TransportConfig
from ..models.servers import (
    HttpServerConfig,
    ServerConfig,
    StdioServerConfig,
    WebSocketServerConfig,
)
from .client import MCPClient
from .exceptions import MCPClientError, MCPConnectionError, MCPTimeoutError
from .transports.base import Transport
from .transports.http import PollingTransport, SimulatedSseTransport, StreamableHttpTransport
from .transports.stdio import StdioTransport
from .transports.websocket import WebSocketTransport

logger = structlog.get_logger(__name__)

TransportFactory = Callable[[], Transport]


@dataclass(eq=False)
class Connection:
    """A live, initialized session with one tool server."""
    server_id: str
    config: ServerConfig
    client: MCPClient

    @property
    def transport(self) -> Transport:
        return self.client.transport

    @property
    def transport_kind(self) -> str:
        return self.client.transport.kind


def uses_simulated_sse(url: str, host_patterns: Sequence[str]) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(fnmatch.fnmatch(host, pattern.lower()) for pattern in host_patterns)


def http_transport_chain(
    server_id: str,
    config: HttpServerConfig,
    client_config: MCPClientConfig,
    transport_config: TransportConfig,
) -> list[TransportFactory]:
    """Ordered transport factories to try for an ``http`` server."""
    def streamable() -> Transport:
        return StreamableHttpTransport(server_id, config.url, config.headers, client_config)

    def simulated_sse() -> Transport:
        return SimulatedSseTransport(
            server_id, config.url, config.headers, client_config,
            response_delay_seconds=transport_config.simulated_response_delay_seconds,
        )

    def polling() -> Transport:
        return PollingTransport(
            server_id, config.url, config.headers, client_config,
            poll_interval_seconds=transport_config.poll_interval_seconds,
            request_timeout_seconds=transport_config.poll_request_timeout_seconds,
        )

    if uses_simulated_sse(config.url, transport_config.simulated_sse_hosts):
        return [simulated_sse]
    return [streamable, simulated_sse, polling]


def direct_transport(
    server_id: str,
    config: StdioServerConfig | WebSocketServerConfig,
    client_config: MCPClientConfig,
    transport_config: TransportConfig,
) -> Transport:
    if isinstance(config, WebSocketServerConfig):
        return WebSocketTransport(
            server_id, config.url, config.headers, client_config,
            reconnect_attempts=config.reconnect_attempts,
            reconnect_delay_seconds=config.reconnect_delay_ms / 1000,
        )
    return StdioTransport(
        server_id, config.command, config.args, config.env, config.cwd,
        terminate_timeout_seconds=transport_config.stdio_terminate_timeout_seconds,
    )


async def _attempt(server_id: str, config: ServerConfig, transport: Transport, client_config: MCPClientConfig) -> Connection:
    """Runs one full connect + handshake, closing everything on failure."""
    client = MCPClient(server_id, transport, client_config)
    try:
        await asyncio.wait_for(client.connect(timeout_seconds=client_config.connect_timeout_seconds),
                               timeout=client_config.connect_timeout_seconds)
    except BaseException as e:
        try:
            await client.close()
        except Exception as close_error:
            logger.debug("Error closing failed attempt.", server_id=server_id, transport=transport.kind, error=str(close_error))
        if isinstance(e, asyncio.TimeoutError):
            raise MCPTimeoutError(f"Handshake with '{server_id}' over {transport.kind} timed out after {client_config.connect_timeout_seconds}s") from e
        raise
    return Connection(server_id=server_id, config=config, client=client)


async def negotiate_connection(
    server_id: str,
    config: ServerConfig,
    client_config: MCPClientConfig | None = None,
    transport_config: TransportConfig | None = None,
) -> Connection:
    """Connects to one server and returns the initialized Connection.

    stdio and websocket servers are tried once. http servers walk
    Streamable HTTP, simulated SSE, then polling, each with a fresh
    client/transport pair, returning the first that completes the handshake.

    Raises:
        MCPConnectionError: every attempt failed (the message lists each one).
    """
    client_config = client_config or MCPClientConfig()
    transport_config = transport_config or TransportConfig()
    log = logger.bind(server_id=server_id, transport=config.transport)

    if not isinstance(config, HttpServerConfig):
        transport = direct_transport(server_id, config, client_config, transport_config)
        log.info("Connecting.", transport_kind=transport.kind)
        return await _attempt(server_id, config, transport, client_config)

    failures: list[str] = []
    for factory in http_transport_chain(server_id, config, client_config, transport_config):
        transport = factory()
        log.info("Trying HTTP transport.", transport_kind=transport.kind, url=config.url)
        try:
            connection = await _attempt(server_id, config, transport, client_config)
        except MCPClientError as e:
            log.warning("HTTP transport failed, falling back.", transport_kind=transport.kind, error=str(e), error_type=type(e).__name__)
            failures.append(f"{transport.kind}: {e}")
            continue
        log.info("Connected.", transport_kind=transport.kind)
        return connection

    raise MCPConnectionError(f"All HTTP transports failed for '{server_id}': " + "; ".join(failures))
