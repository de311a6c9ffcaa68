"""
Custom exceptions for MCP connections, transports and tool calls.
"""
from typing import Any


class MCPClientError(Exception):
    """Base class for all MCP client errors."""
    pass


class MCPConfigurationError(MCPClientError):
    """Raised when a server configuration document is malformed or violates its schema."""
    pass


class MCPConnectionError(MCPClientError):
    """Raised when there's an issue connecting to, or staying connected to, the MCP server."""
    pass


class MCPTimeoutError(MCPConnectionError):
    """Raised when a connection or request times out."""
    pass


class MCPTransportClosedError(MCPConnectionError):
    """Raised for requests still pending when their transport closes."""
    def __init__(self, message: str = "Transport closed", reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class MCPProtocolError(MCPClientError):
    """Raised for errors related to the JSONRPC protocol itself
    (e.g., error responses, malformed responses, unexpected message format)."""
    def __init__(self, message: str, error_code: int | None = None, error_data: Any | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.error_data = error_data


class MCPToolInvocationError(MCPClientError):
    """Raised when invoking a tool on the MCP server results in an error,
    either a JSONRPC error response or a result flagged with isError."""
    def __init__(self, tool_name: str, message: str, error_code: int | None = None, error_data: Any | None = None):
        full_message = f"Error invoking tool '{tool_name}': {message}"
        super().__init__(full_message)
        self.tool_name = tool_name
        self.original_message = message
        self.error_code = error_code
        self.error_data = error_data


class MCPAuthError(MCPClientError):
    """Raised when a remote server rejects the configured credentials (HTTP 401/403)."""
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MCPServerUnavailableError(MCPClientError):
    """Raised when a tool is invoked on a server without a live connection."""
    def __init__(self, server_id: str, message: str | None = None):
        super().__init__(message or f"No active connection for server '{server_id}'")
        self.server_id = server_id
