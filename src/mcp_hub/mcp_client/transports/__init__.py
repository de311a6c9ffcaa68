"""
Transports carrying JSON-RPC messages between the client and MCP servers.
"""
from .base import Transport
from .http import (
    BaseHttpTransport,
    PollingTransport,
    SimulatedSseTransport,
    StreamableHttpTransport,
)
from .stdio import LineFramer, StdioTransport, build_command_line
from .websocket import WebSocketTransport

__all__ = [
    "BaseHttpTransport",
    "LineFramer",
    "PollingTransport",
    "SimulatedSseTransport",
    "StdioTransport",
    "StreamableHttpTransport",
    "Transport",
    "WebSocketTransport",
    "build_command_line",
]
