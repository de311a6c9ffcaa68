"""
Typed event hooks used by transports, clients and the registry in place of
assignable callback attributes.
"""
from collections.abc import Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class EventHook(Generic[T]):
    """A list of synchronous handlers for one kind of event.

    Handlers are called in registration order. A handler that raises is
    logged and skipped so that one faulty subscriber cannot break the
    emitter or the other subscribers.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: list[Callable[[T], None]] = []

    def add(self, handler: Callable[[T], None]) -> Callable[[T], None]:
        if handler not in self._handlers:
            self._handlers.append(handler)
        return handler

    def remove(self, handler: Callable[[T], None]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def clear(self) -> None:
        self._handlers.clear()

    def emit(self, value: T) -> None:
        for handler in list(self._handlers):
            try:
                handler(value)
            except Exception:
                logger.exception("Event handler failed.", event=self.name, handler=getattr(handler, "__qualname__", repr(handler)))

    def __len__(self) -> int:
        return len(self._handlers)
