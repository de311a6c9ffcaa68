"""
JSON-RPC 2.0 envelope helpers shared by the client and the transports.
"""
from typing import Any

JSONRPC_VERSION = "2.0"


def generate_jsonrpc_request(method: str, params: dict[str, Any] | None = None, request_id: str | int | None = None) -> dict[str, Any]:
    """Generates a JSONRPC 2.0 request dictionary."""
    message: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "id": request_id,
    }
    if params is not None:
        message["params"] = params
    return message


def generate_jsonrpc_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    """Generates a JSONRPC 2.0 notification (a request without an id)."""
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def generate_jsonrpc_result(request_id: str | int, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def is_request(message: dict[str, Any]) -> bool:
    """True for messages that expect a reply: they carry both a method and an id."""
    return "method" in message and message.get("id") is not None


def is_response(message: dict[str, Any]) -> bool:
    return "method" not in message and message.get("id") is not None and ("result" in message or "error" in message)


def is_notification(message: dict[str, Any]) -> bool:
    return "method" in message and message.get("id") is None
