"""
Classifies failures into connection-level (evict the connection) and
transient (report, keep the connection).
"""
import re
from enum import Enum

from ..mcp_client.exceptions import MCPConnectionError

CONNECTION_ERROR_CODES = frozenset({-32000, -32001, -32700})

CONNECTION_ERROR_PATTERN = re.compile(
    r"connection (closed|refused|reset|lost)"
    r"|timed? ?out"
    r"|disconnected"
    r"|transport closed"
    r"|broken pipe",
    re.IGNORECASE,
)


class ErrorClass(str, Enum):
    CONNECTION = "connection"
    TRANSIENT = "transient"


def classify_error(error: BaseException) -> ErrorClass:
    if isinstance(error, MCPConnectionError):
        return ErrorClass.CONNECTION
    if getattr(error, "error_code", None) in CONNECTION_ERROR_CODES:
        return ErrorClass.CONNECTION
    if CONNECTION_ERROR_PATTERN.search(str(error)):
        return ErrorClass.CONNECTION
    return ErrorClass.TRANSIENT


def is_connection_error(error: BaseException) -> bool:
    return classify_error(error) is ErrorClass.CONNECTION
