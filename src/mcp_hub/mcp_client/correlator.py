"""
Request/response correlation for JSON-RPC over asynchronous channels.
"""
import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from .exceptions import MCPTimeoutError

logger = structlog.get_logger(__name__)

RequestId = str | int


@dataclass
class PendingRequest:
    request_id: RequestId
    future: asyncio.Future
    timeout_handle: asyncio.TimerHandle
    timeout_seconds: float


class RequestCorrelator:
    """Tracks outstanding requests by id until they are answered, rejected or expire.

    Every registered request is settled exactly once: by ``resolve``, by
    ``reject``/``reject_all``, or by its timer firing. Whichever happens
    first removes the entry and cancels the timer, so later attempts are
    no-ops. A waiter that is cancelled also removes its entry.
    """

    def __init__(self, timeout_seconds: float = 10.0, name: str = "requests"):
        self.timeout_seconds = timeout_seconds
        self.name = name
        self._pending: dict[RequestId, PendingRequest] = {}
        self.logger = logger.bind(correlator=name)

    def register(self, request_id: RequestId, timeout_seconds: float | None = None) -> asyncio.Future:
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id!r} is already pending")
        loop = asyncio.get_running_loop()
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        future = loop.create_future()
        handle = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = PendingRequest(request_id, future, handle, timeout)
        future.add_done_callback(lambda f, rid=request_id: self._forget_cancelled(rid, f))
        return future

    def resolve(self, request_id: RequestId, message: Any) -> bool:
        entry = self._take(request_id)
        if entry is None:
            self.logger.debug("Response for unknown or settled request dropped.", request_id=request_id)
            return False
        entry.future.set_result(message)
        return True

    def reject(self, request_id: RequestId, error: BaseException) -> bool:
        entry = self._take(request_id)
        if entry is None:
            return False
        entry.future.set_exception(error)
        return True

    def reject_all(self, error: BaseException) -> int:
        rejected = 0
        for request_id in list(self._pending):
            if self.reject(request_id, error):
                rejected += 1
        if rejected:
            self.logger.debug("Rejected all pending requests.", count=rejected, error=str(error))
        return rejected

    def pending_ids(self) -> list[RequestId]:
        return list(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def _take(self, request_id: RequestId) -> PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return None
        entry.timeout_handle.cancel()
        if entry.future.done():
            return None
        return entry

    def _expire(self, request_id: RequestId) -> None:
        entry = self._pending.get(request_id)
        if entry is None:
            return
        self.logger.warning("Request timed out.", request_id=request_id, timeout_seconds=entry.timeout_seconds)
        self.reject(request_id, MCPTimeoutError(f"Request {request_id} timed out after {entry.timeout_seconds}s"))

    def _forget_cancelled(self, request_id: RequestId, future: asyncio.Future) -> None:
        if not future.cancelled():
            return
        entry = self._pending.get(request_id)
        if entry is not None and entry.future is future:
            del self._pending[request_id]
            entry.timeout_handle.cancel()
