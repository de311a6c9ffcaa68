"""
MCP Protocol Client Implementation.

JSON-RPC 2.0 sessions with MCP servers over stdio, HTTP (streamable,
simulated SSE, polling) and WebSocket transports.
"""

from .exceptions import (
    MCPAuthError,
    MCPClientError,
    MCPConfigurationError,
    MCPConnectionError,
    MCPProtocolError,
    MCPServerUnavailableError,
    MCPTimeoutError,
    MCPToolInvocationError,
    MCPTransportClosedError,
)

__all__ = [
    "MCPAuthError",
    "MCPClientError",
    "MCPConfigurationError",
    "MCPConnectionError",
    "MCPProtocolError",
    "MCPServerUnavailableError",
    "MCPTimeoutError",
    "MCPToolInvocationError",
    "MCPTransportClosedError",
]
