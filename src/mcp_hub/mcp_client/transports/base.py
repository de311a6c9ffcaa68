"""
Transport contract shared by every way of reaching an MCP server.
"""
import abc
from typing import Any, ClassVar

import structlog

from ...utils.events import EventHook

logger = structlog.get_logger(__name__)


class Transport(abc.ABC):
    """
    Abstract bidirectional JSON-RPC message channel.

    Incoming messages, transport errors and the (single) close event are
    published through typed event hooks; subscribers register with
    ``transport.on_message.add(handler)``.
    """

    kind: ClassVar[str] = "abstract"

    def __init__(self, name: str):
        self.name = name
        self.on_message: EventHook[dict[str, Any]] = EventHook("message")
        self.on_error: EventHook[Exception] = EventHook("error")
        self.on_close: EventHook[str | None] = EventHook("close")
        self._started = False
        self._closed = False
        self.close_reason: str | None = None
        self.logger = logger.bind(server_id=name, transport=self.kind)

    @abc.abstractmethod
    async def start(self) -> None:
        """Opens the underlying channel. Raises MCPConnectionError on failure."""
        pass

    @abc.abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Delivers one JSON-RPC message to the server."""
        pass

    @abc.abstractmethod
    async def close(self) -> None:
        """Releases every resource held by the transport and signals close."""
        pass

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_started(self) -> bool:
        return self._started and not self._closed

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            self.logger.warning("Ignoring non-object JSON-RPC message.", message_type=type(message).__name__)
            return
        self.on_message.emit(message)

    def _report_error(self, error: Exception) -> None:
        self.logger.warning("Transport error.", error=str(error), error_type=type(error).__name__)
        self.on_error.emit(error)

    def _signal_close(self, reason: str | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        self.logger.info("Transport closed.", reason=reason)
        self.on_close.emit(reason)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
