"""
ToolBridge: exposes running servers' tools to the model layer under
server-qualified names and routes invocations back to the owning server.
"""
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from ..mcp_client.exceptions import MCPClientError, MCPToolInvocationError
from ..models.mcp import BridgedTool
from .registry import ConnectionRegistry
from .tools import EnabledTools, normalize_tool_result, qualify_tool_name, split_qualified_name

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolDefinition:
    """What the model layer receives for one tool: a description, a JSON schema and an executor."""
    description: str
    parameters: dict[str, Any]
    execute: Callable[[dict[str, Any]], Awaitable[Any]]


class ToolBridge:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry
        self.logger = logger.bind(component="ToolBridge")

    def split_qualified_name(self, qualified_name: str) -> tuple[str, str]:
        return split_qualified_name(qualified_name, self.registry.server_configs)

    async def active_tools_for(self, enabled_tools: EnabledTools) -> list[BridgedTool]:
        """Bridged tools for one conversation's selection.

        Servers that are not running are skipped, and so are tool names the
        server no longer advertises. Input schemas are fetched live from the
        server on every call.
        """
        bridged: list[BridgedTool] = []
        for server_id, tool_names in enabled_tools.items():
            if not tool_names:
                continue
            log = self.logger.bind(server_id=server_id)
            status = self.registry.status(server_id)
            client = self.registry.client_for(server_id)
            if status is None or not status.is_running or client is None:
                log.debug("Skipping tools of server that is not running.")
                continue
            try:
                live_tools = {t.name: t for t in await client.list_tools()}
            except MCPClientError as e:
                log.warning("Could not refresh tool schemas.", error=str(e))
                await self.registry.report_failure(server_id, e)
                continue
            for tool_name in tool_names:
                tool = live_tools.get(tool_name)
                if tool is None:
                    log.debug("Enabled tool no longer advertised, skipping.", tool_name=tool_name)
                    continue
                bridged.append(BridgedTool(
                    qualified_name=qualify_tool_name(server_id, tool_name),
                    description=tool.description or "",
                    parameters=tool.input_schema,
                    server_id=server_id,
                    tool_name=tool_name,
                ))
        return bridged

    async def invoke(self, qualified_name: str, args: dict[str, Any] | None = None) -> Any:
        """Calls a tool by its qualified name and returns the normalized result.

        Raises:
            MCPServerUnavailableError: the server has no live connection.
            MCPToolInvocationError: the tool reported an error.
            MCPClientError: transport or protocol failure (already reported to
                the registry, which evicts the connection if it is dead).
        """
        server_id, tool_name = self.split_qualified_name(qualified_name)
        log = self.logger.bind(server_id=server_id, tool_name=tool_name)
        client = self.registry.require_client(server_id)
        log.info("Invoking tool.")
        try:
            result = await client.call_tool(tool_name, args or {})
        except MCPClientError as e:
            log.warning("Tool invocation failed.", error=str(e), error_type=type(e).__name__)
            await self.registry.report_failure(server_id, e)
            raise
        if isinstance(result, dict) and result.get("isError"):
            message = normalize_tool_result(result)
            raise MCPToolInvocationError(tool_name=tool_name, message=message if isinstance(message, str) else str(message))
        return normalize_tool_result(result)

    def build_tool_set(self, tools: list[BridgedTool]) -> dict[str, ToolDefinition]:
        """Maps qualified names to tool definitions whose executors route through ``invoke``."""
        def executor(qualified_name: str) -> Callable[[dict[str, Any]], Awaitable[Any]]:
            async def execute(args: dict[str, Any]) -> Any:
                return await self.invoke(qualified_name, args)
            return execute

        return {
            tool.qualified_name: ToolDefinition(
                description=tool.description,
                parameters=tool.parameters,
                execute=executor(tool.qualified_name),
            )
            for tool in tools
        }
