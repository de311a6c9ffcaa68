"""
MCP client session: JSON-RPC request/response over any Transport.
"""
import itertools
from typing import Any

import structlog

from ..config import MCPClientConfig
from ..models.mcp import MCPTool
from ..utils.events import EventHook
from .correlator import RequestCorrelator
from .exceptions import (
    MCPClientError,
    MCPConnectionError,
    MCPProtocolError,
    MCPToolInvocationError,
    MCPTransportClosedError,
)
from .jsonrpc import generate_jsonrpc_notification, generate_jsonrpc_request, is_response
from .transports.base import Transport

logger = structlog.get_logger(__name__)


class MCPClient:
    """
    One MCP session bound to one transport.

    The client owns request ids, the pending-request correlator and the
    initialize handshake. When the transport closes, every pending request
    is rejected with MCPTransportClosedError and ``on_close`` fires.
    """

    def __init__(self, server_id: str, transport: Transport, config: MCPClientConfig | None = None):
        self.server_id = server_id
        self.transport = transport
        self.config = config or MCPClientConfig()
        self._ids = itertools.count(1)
        self._correlator = RequestCorrelator(self.config.request_timeout_seconds, name=server_id)
        self.server_info: dict[str, Any] | None = None
        self.server_capabilities: dict[str, Any] = {}
        self.protocol_version: str | None = None
        self.last_error: Exception | None = None
        self.on_close: EventHook[str | None] = EventHook("client-close")
        self.logger = logger.bind(server_id=server_id, transport=transport.kind)

        transport.on_message.add(self._handle_message)
        transport.on_error.add(self._handle_error)
        transport.on_close.add(self._handle_close)

    @property
    def is_connected(self) -> bool:
        return self.server_info is not None and not self.transport.is_closed

    @property
    def pending_requests(self) -> int:
        return len(self._correlator)

    async def connect(self, timeout_seconds: float | None = None) -> dict[str, Any]:
        """Starts the transport and performs the initialize handshake.

        Returns the server's initialize result. Raises an MCPClientError
        subclass if the transport cannot start or the handshake fails.
        """
        await self.transport.start()
        result = await self.request(
            "initialize",
            {
                "protocolVersion": self.config.protocol_version,
                "capabilities": {"tools": {}},
                "clientInfo": {"name": self.config.client_name, "version": self.config.client_version},
            },
            timeout_seconds=timeout_seconds,
        )
        if not isinstance(result, dict):
            raise MCPProtocolError(f"Unexpected initialize result from '{self.server_id}': {result!r}")
        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}
        self.protocol_version = result.get("protocolVersion")
        await self.notify("notifications/initialized")
        self.logger.info("MCP session initialized.", server_info=self.server_info, protocol_version=self.protocol_version)
        return result

    async def request(self, method: str, params: dict[str, Any] | None = None, timeout_seconds: float | None = None) -> Any:
        """Sends a request and waits for its response's ``result``.

        Raises:
            MCPTimeoutError: no response within the request timeout.
            MCPTransportClosedError: the transport closed first.
            MCPProtocolError: the server answered with a JSON-RPC error.
            MCPToolInvocationError: a ``tools/call`` request failed on the server.
        """
        if self.transport.is_closed:
            raise MCPTransportClosedError(f"Transport closed: cannot send '{method}' to '{self.server_id}'")
        request_id = next(self._ids)
        log = self.logger.bind(method=method, request_id=request_id)
        future = self._correlator.register(request_id, timeout_seconds)
        try:
            await self.transport.send(generate_jsonrpc_request(method, params, request_id))
        except MCPClientError:
            future.cancel()
            raise
        except Exception as e:
            future.cancel()
            log.exception("Unexpected error while sending request.")
            raise MCPConnectionError(f"Failed to send '{method}' to '{self.server_id}': {e}") from e

        response = await future
        log.debug("Received response.", error_present="error" in response)

        if "error" in response:
            err = response["error"] if isinstance(response["error"], dict) else {"message": str(response["error"])}
            err_msg = err.get("message", "Unknown MCP error")
            err_code = err.get("code")
            err_data = err.get("data")
            log.warning("JSONRPC error response received.", code=err_code, msg=err_msg)
            if method == "tools/call":
                tool_name = (params or {}).get("name", method)
                raise MCPToolInvocationError(tool_name=tool_name, message=err_msg, error_code=err_code, error_data=err_data)
            raise MCPProtocolError(message=err_msg, error_code=err_code, error_data=err_data)
        return response.get("result")

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self.transport.send(generate_jsonrpc_notification(method, params))

    async def list_tools(self) -> list[MCPTool]:
        """Fetches the server's tool listing, following ``nextCursor`` pages."""
        tools: list[MCPTool] = []
        cursor: str | None = None
        while True:
            result = await self.request("tools/list", {"cursor": cursor} if cursor else None)
            if not isinstance(result, dict):
                raise MCPProtocolError(f"Unexpected tools/list result from '{self.server_id}': {result!r}")
            for raw_tool in result.get("tools") or []:
                try:
                    tools.append(MCPTool.model_validate(raw_tool))
                except ValueError as e:
                    self.logger.warning("Skipping malformed tool description.", error=str(e))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def close(self) -> None:
        self._correlator.reject_all(MCPTransportClosedError(f"Transport closed: client for '{self.server_id}' shut down"))
        await self.transport.close()

    def _handle_message(self, message: dict[str, Any]) -> None:
        if is_response(message):
            self._correlator.resolve(message["id"], message)
        elif "method" in message:
            self.logger.debug("Ignoring server-initiated message.", method=message.get("method"))
        else:
            self.logger.warning("Ignoring unrecognized message.", message=str(message)[:200])

    def _handle_error(self, error: Exception) -> None:
        self.last_error = error

    def _handle_close(self, reason: str | None) -> None:
        self._correlator.reject_all(MCPTransportClosedError(f"Transport closed: {reason}" if reason else "Transport closed", reason=reason))
        self.on_close.emit(reason)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

