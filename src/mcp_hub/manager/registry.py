"""
ConnectionRegistry: owns every live MCP connection and the status the UI shows for it.
"""
import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from ..config import Config
from ..mcp_client.client import MCPClient
from ..mcp_client.exceptions import MCPClientError, MCPServerUnavailableError
from ..mcp_client.negotiator import Connection, negotiate_connection
from ..models.common import ServerState
from ..models.mcp import ServerStatus, ToolRecord
from ..models.servers import (
    HttpServerConfig,
    ServerConfig,
    StdioServerConfig,
    WebSocketServerConfig,
    display_name,
    parse_server_configuration,
)
from ..utils.events import EventHook
from .health import ErrorClass, classify_error
from .reconciler import ReconcilePlan, plan_reconciliation
from .tools import discover_tools

logger = structlog.get_logger(__name__)

Connector = Callable[[str, ServerConfig], Awaitable[Connection]]


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _coerce_configs(configuration: str | Mapping[str, Any] | None) -> dict[str, ServerConfig]:
    """Accepts raw configuration (text or decoded JSON) or already validated models."""
    if isinstance(configuration, Mapping) and configuration and all(
        isinstance(c, (StdioServerConfig, HttpServerConfig, WebSocketServerConfig)) for c in configuration.values()
    ):
        return dict(configuration)
    return parse_server_configuration(configuration)


class ConnectionRegistry:
    """
    Maps server ids to live connections and published statuses.

    At most one live connection exists per server id: starting a server that
    is running or already starting is a no-op. One server's failure never
    affects another's. Status changes are published through
    ``on_status_change`` (the full status list, in configuration order) and
    user-facing warnings through ``on_notice``.
    """

    def __init__(self, config: Config | None = None, connector: Connector | None = None):
        self.config = config or Config()
        self._connector: Connector = connector or self._negotiate
        self._configs: dict[str, ServerConfig] = {}
        self._connections: dict[str, Connection] = {}
        self._statuses: dict[str, ServerStatus] = {}
        self._starting: dict[str, asyncio.Task] = {}
        self._close_handlers: dict[Connection, Callable[[str | None], None]] = {}
        self._background: set[asyncio.Task] = set()
        self._shut_down = False
        self.on_status_change: EventHook[list[ServerStatus]] = EventHook("status-change")
        self.on_notice: EventHook[str] = EventHook("notice")
        self.logger = logger.bind(component="ConnectionRegistry")

    async def _negotiate(self, server_id: str, config: ServerConfig) -> Connection:
        return await negotiate_connection(server_id, config, self.config.mcp_client, self.config.transports)

    # Queries

    @property
    def server_configs(self) -> dict[str, ServerConfig]:
        return dict(self._configs)

    def status(self, server_id: str) -> ServerStatus | None:
        status = self._statuses.get(server_id)
        return status.model_copy(deep=True) if status else None

    def statuses(self) -> list[ServerStatus]:
        return [s.model_copy(deep=True) for s in self._statuses.values()]

    def running_server_ids(self) -> list[str]:
        return [sid for sid in self._statuses if sid in self._connections]

    def client_for(self, server_id: str) -> MCPClient | None:
        connection = self._connections.get(server_id)
        return connection.client if connection else None

    def require_client(self, server_id: str) -> MCPClient:
        """Returns the live client for a server or raises MCPServerUnavailableError."""
        client = self.client_for(server_id)
        if client is not None:
            return client
        status = self._statuses.get(server_id)
        if status is not None and status.status == ServerState.ERROR:
            raise MCPServerUnavailableError(server_id, f"Server '{server_id}' is no longer available: {status.error}")
        raise MCPServerUnavailableError(server_id)

    # Lifecycle

    async def initialize(self, configuration: str | Mapping[str, Any] | None) -> None:
        """Loads a configuration document and starts every enabled server concurrently.

        Start failures are recorded per server and never raised.

        Raises:
            MCPConfigurationError: the document is malformed; nothing is changed.
        """
        configs = _coerce_configs(configuration)
        if self._configs:
            self.logger.info("Registry already initialized, reconciling instead.")
            await self.reconcile(configs)
            return

        self._shut_down = False
        self._configs = dict(configs)
        for server_id in configs:
            self._statuses[server_id] = self._build_status(server_id, ServerState.UNLOADED)
        self._publish()

        enabled = [sid for sid, cfg in configs.items() if cfg.enabled]
        self.logger.info("Initializing MCP servers.", configured=len(configs), enabled=len(enabled))
        if not enabled:
            return

        await asyncio.gather(*(self.start_server(sid) for sid in enabled), return_exceptions=True)

        running = [sid for sid in enabled if sid in self._connections]
        self.logger.info("MCP servers initialized.", running=len(running), enabled=len(enabled))
        if not running and not self._shut_down:
            self._notice(f"None of the {len(enabled)} enabled MCP servers could be started. Check the server configuration.")

    async def reconcile(self, configuration: str | Mapping[str, Any] | None) -> ReconcilePlan:
        """Applies a new configuration with the minimal set of closes and starts.

        Servers whose restart-relevant configuration is unchanged are not touched.

        Raises:
            MCPConfigurationError: the document is malformed; nothing is changed.
        """
        new_configs = _coerce_configs(configuration)
        plan = plan_reconciliation(self._configs, new_configs)
        self.logger.info(
            "Reconciling MCP servers.",
            to_add=sorted(plan.to_add), to_remove=sorted(plan.to_remove),
            to_restart=sorted(plan.to_restart), unchanged=len(plan.unchanged),
        )
        self._shut_down = False

        # Every close completes before any start begins.
        await asyncio.gather(*(self._stop(sid) for sid in plan.to_remove | plan.to_restart), return_exceptions=True)

        self._configs = {
            sid: self._configs[sid] if sid in plan.unchanged else new_configs[sid]
            for sid in new_configs
        }
        statuses: dict[str, ServerStatus] = {}
        for sid, cfg in self._configs.items():
            if sid in plan.unchanged:
                statuses[sid] = self._statuses.get(sid) or self._build_status(sid, ServerState.UNLOADED)
            elif sid in plan.to_restart and not cfg.enabled:
                statuses[sid] = self._build_status(sid, ServerState.STOPPED)
            else:
                statuses[sid] = self._build_status(sid, ServerState.UNLOADED)
        self._statuses = statuses
        self._publish()

        to_start = [sid for sid in self._configs if sid in (plan.to_add | plan.to_restart) and self._configs[sid].enabled]
        await asyncio.gather(*(self.start_server(sid) for sid in to_start), return_exceptions=True)
        return plan

    async def start_server(self, server_id: str) -> ServerStatus | None:
        """Starts one configured, enabled server unless it is running or already starting."""
        if server_id in self._connections or server_id in self._starting:
            self.logger.debug("Start skipped, server already running or starting.", server_id=server_id)
            return self.status(server_id)
        task = asyncio.ensure_future(self._start(server_id))
        self._starting[server_id] = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            self.logger.info("Start cancelled by shutdown.", server_id=server_id)
        finally:
            if self._starting.get(server_id) is task:
                del self._starting[server_id]
        return self.status(server_id)

    async def stop_server(self, server_id: str) -> None:
        await self._stop(server_id)
        if server_id in self._statuses:
            self._set_status(server_id, ServerState.STOPPED)

    async def restart_server(self, server_id: str) -> ServerStatus | None:
        """User-initiated recovery: close whatever is there and start again."""
        await self._stop(server_id)
        if server_id not in self._configs:
            return None
        self._set_status(server_id, ServerState.UNLOADED)
        return await self.start_server(server_id)

    async def shutdown_all(self) -> None:
        """Cancels in-flight starts and closes every connection concurrently.

        A failing close is logged and skipped.
        """
        self._shut_down = True
        starts = list(self._starting.values())
        for task in starts:
            task.cancel()
        if starts:
            await asyncio.wait(starts, timeout=self.config.mcp_client.shutdown_timeout_seconds)
        connections = list(self._connections.values())
        self._connections.clear()
        self.logger.info("Shutting down MCP servers.", count=len(connections))
        await asyncio.gather(*(self._close_connection(c) for c in connections), return_exceptions=True)
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._configs.clear()
        self._statuses.clear()
        self._publish()

    async def refresh_tools(self, server_id: str) -> list[ToolRecord]:
        client = self.require_client(server_id)
        try:
            tools = await discover_tools(client)
        except MCPClientError as e:
            await self.report_failure(server_id, e)
            raise
        if server_id in self._statuses:
            self._statuses[server_id] = self._statuses[server_id].model_copy(update={"tools": tools})
            self._publish()
        return tools

    async def report_failure(self, server_id: str, error: BaseException) -> ErrorClass:
        """Classifies a failure seen on a server and evicts the connection if it is dead."""
        error_class = classify_error(error)
        log = self.logger.bind(server_id=server_id, error=_error_message(error), error_class=error_class.value)
        if error_class is ErrorClass.TRANSIENT:
            log.warning("Transient MCP error, keeping connection.")
            return error_class
        connection = self._connections.pop(server_id, None)
        if connection is None:
            return error_class
        log.error("Connection-level MCP error, evicting connection.")
        await self._close_connection(connection)
        self._set_status(server_id, ServerState.ERROR, error=_error_message(error))
        return error_class

    # Internals

    async def _start(self, server_id: str) -> None:
        log = self.logger.bind(server_id=server_id)
        first_attempt = True
        while True:
            config = self._configs.get(server_id)
            if config is None or self._shut_down:
                return
            if not config.enabled:
                if not first_attempt:
                    self._set_status(server_id, ServerState.STOPPED)
                return
            first_attempt = False

            self._set_status(server_id, ServerState.STARTING)
            try:
                connection = await self._connector(server_id, config)
            except Exception as e:
                if self._config_changed(server_id, config):
                    continue
                log.error("Failed to start MCP server.", error=_error_message(e), error_type=type(e).__name__)
                self._set_status(server_id, ServerState.ERROR, error=_error_message(e))
                return

            if self._config_changed(server_id, config) or self._shut_down:
                log.info("Configuration changed while starting, discarding connection.")
                await self._close_connection(connection)
                continue

            try:
                tools = await discover_tools(connection.client)
            except asyncio.CancelledError:
                await self._close_connection(connection)
                raise
            except MCPClientError as e:
                if classify_error(e) is ErrorClass.CONNECTION:
                    log.error("Tool discovery failed.", error=_error_message(e))
                    await self._close_connection(connection)
                    self._set_status(server_id, ServerState.ERROR, error=f"Tool discovery failed: {_error_message(e)}")
                    return
                log.warning("Tool discovery failed, continuing without tools.", error=_error_message(e))
                tools = []

            if self._config_changed(server_id, config) or self._shut_down:
                await self._close_connection(connection)
                continue

            if connection.transport.is_closed:
                reason = connection.transport.close_reason or "Transport closed"
                log.error("Connection closed during startup.", reason=reason)
                await self._close_connection(connection)
                self._set_status(server_id, ServerState.ERROR, error=f"Connection closed: {reason}")
                return

            self._register(server_id, connection)
            log.info("MCP server running.", transport_kind=connection.transport_kind, tool_count=len(tools))
            self._set_status(server_id, ServerState.RUNNING, tools=tools)
            return

    def _config_changed(self, server_id: str, config: ServerConfig) -> bool:
        return self._configs.get(server_id) is not config

    def _register(self, server_id: str, connection: Connection) -> None:
        def handle_close(reason: str | None) -> None:
            self._on_connection_lost(server_id, connection, reason)

        connection.client.on_close.add(handle_close)
        self._close_handlers[connection] = handle_close
        self._connections[server_id] = connection

    def _on_connection_lost(self, server_id: str, connection: Connection, reason: str | None) -> None:
        if self._connections.get(server_id) is not connection:
            return
        del self._connections[server_id]
        self.logger.error("MCP connection lost.", server_id=server_id, reason=reason)
        self._set_status(server_id, ServerState.ERROR, error=f"Connection closed: {reason or 'unknown reason'}")
        task = asyncio.get_running_loop().create_task(self._close_connection(connection))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stop(self, server_id: str) -> None:
        connection = self._connections.pop(server_id, None)
        if connection is not None:
            await self._close_connection(connection)

    async def _close_connection(self, connection: Connection) -> None:
        handler = self._close_handlers.pop(connection, None)
        if handler is not None:
            connection.client.on_close.remove(handler)
        timeout = self.config.mcp_client.shutdown_timeout_seconds
        try:
            await asyncio.wait_for(connection.client.close(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error("Timed out closing MCP connection.", server_id=connection.server_id, timeout_seconds=timeout)
        except Exception as e:
            self.logger.error("Error closing MCP connection.", server_id=connection.server_id, error=_error_message(e), error_type=type(e).__name__)

    def _build_status(self, server_id: str, state: ServerState, tools: list[ToolRecord] | None = None, error: str | None = None) -> ServerStatus:
        config = self._configs.get(server_id)
        return ServerStatus(
            id=server_id,
            name=display_name(server_id, config) if config else server_id,
            description=config.description if config else "",
            status=state,
            tools=tools or [],
            error=error,
        )

    def _set_status(self, server_id: str, state: ServerState, tools: list[ToolRecord] | None = None, error: str | None = None) -> None:
        if server_id not in self._configs:
            return
        self._statuses[server_id] = self._build_status(server_id, state, tools, error)
        self._publish()

    def _publish(self) -> None:
        self.on_status_change.emit(self.statuses())

    def _notice(self, message: str) -> None:
        self.logger.warning("Notice.", message=message)
        self.on_notice.emit(message)
