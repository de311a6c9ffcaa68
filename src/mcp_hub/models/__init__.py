"""
Pydantic models for the MCP Hub project.
"""
from .common import BasePydanticModel, ServerState, TransportType
from .conversation import (
    AssistantEntry,
    ErrorPart,
    FinishPart,
    StreamPart,
    TextDelta,
    ToolCallPart,
    ToolCallRecord,
    ToolResultEntry,
    TurnResult,
    TurnState,
)
from .mcp import BridgedTool, MCPTool, ServerStatus, ToolRecord
from .servers import (
    HttpServerConfig,
    ServerConfig,
    StdioServerConfig,
    WebSocketServerConfig,
    parse_server_configuration,
)

__all__ = [
    "AssistantEntry",
    "BasePydanticModel",
    "BridgedTool",
    "ErrorPart",
    "FinishPart",
    "HttpServerConfig",
    "MCPTool",
    "ServerConfig",
    "ServerState",
    "ServerStatus",
    "StdioServerConfig",
    "StreamPart",
    "TextDelta",
    "ToolCallPart",
    "ToolCallRecord",
    "ToolRecord",
    "ToolResultEntry",
    "TransportType",
    "TurnResult",
    "TurnState",
    "WebSocketServerConfig",
    "parse_server_configuration",
]
