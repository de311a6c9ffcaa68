"""
Tool discovery, server-qualified tool names, and the per-conversation
enabled-tools selection.

``EnabledTools`` maps a server id to the tool names the user switched on for
one conversation. All helpers here are pure and return new mappings.
"""
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..mcp_client.client import MCPClient
from ..models.mcp import ServerStatus, ToolRecord

EnabledTools = Mapping[str, Sequence[str]]

QUALIFIED_NAME_SEPARATOR = "_"


async def discover_tools(client: MCPClient) -> list[ToolRecord]:
    """Lists a server's tools as records. Newly discovered tools start disabled."""
    tools = await client.list_tools()
    return [ToolRecord(name=t.name, description=t.description or "", enabled=False) for t in tools]


def qualify_tool_name(server_id: str, tool_name: str) -> str:
    return f"{server_id}{QUALIFIED_NAME_SEPARATOR}{tool_name}"


def split_qualified_name(qualified_name: str, server_ids: Iterable[str] = ()) -> tuple[str, str]:
    """Recovers (server id, tool name) from a qualified name.

    Prefers the longest known server id followed by the separator, so ids
    that themselves contain underscores still resolve; without a match the
    name is split at the first separator.

    Raises:
        ValueError: the name has no separator at all.
    """
    candidates = sorted(
        (sid for sid in server_ids if qualified_name.startswith(sid + QUALIFIED_NAME_SEPARATOR)),
        key=len,
        reverse=True,
    )
    for server_id in candidates:
        tool_name = qualified_name[len(server_id) + len(QUALIFIED_NAME_SEPARATOR):]
        if tool_name:
            return server_id, tool_name
    server_id, separator, tool_name = qualified_name.partition(QUALIFIED_NAME_SEPARATOR)
    if not separator or not server_id or not tool_name:
        raise ValueError(f"'{qualified_name}' is not a server-qualified tool name")
    return server_id, tool_name


def normalize_tool_result(result: Any) -> Any:
    """Flattens an MCP ``tools/call`` result into what the model sees.

    A content array of text parts becomes the joined text; anything else is
    returned unchanged.
    """
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            part["text"]
            for part in result["content"]
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        ]
        if texts:
            return "\n".join(texts)
    return result


def toggle_tool(enabled_tools: EnabledTools, server_id: str, tool_name: str, enabled: bool) -> dict[str, list[str]]:
    updated = {sid: list(names) for sid, names in enabled_tools.items()}
    names = updated.get(server_id, [])
    if enabled and tool_name not in names:
        names = [*names, tool_name]
    elif not enabled:
        names = [n for n in names if n != tool_name]
    if names:
        updated[server_id] = names
    else:
        updated.pop(server_id, None)
    return updated


def enable_all_server_tools(enabled_tools: EnabledTools, status: ServerStatus) -> dict[str, list[str]]:
    updated = {sid: list(names) for sid, names in enabled_tools.items()}
    if status.tools:
        updated[status.id] = [t.name for t in status.tools]
    return updated


def disable_all_server_tools(enabled_tools: EnabledTools, server_id: str) -> dict[str, list[str]]:
    return {sid: list(names) for sid, names in enabled_tools.items() if sid != server_id}


def enable_all_running_tools(statuses: Iterable[ServerStatus]) -> dict[str, list[str]]:
    """Selects every tool of every running server."""
    return {s.id: [t.name for t in s.tools] for s in statuses if s.is_running and s.tools}


def with_enabled_flags(status: ServerStatus, enabled_tools: EnabledTools) -> list[ToolRecord]:
    """The server's tool records with ``enabled`` reflecting one conversation's selection."""
    selected = set(enabled_tools.get(status.id, ()))
    return [t.model_copy(update={"enabled": t.name in selected}) for t in status.tools]
