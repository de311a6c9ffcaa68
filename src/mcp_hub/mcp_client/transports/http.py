"""
HTTP-based MCP transports built on aiohttp.

Three variants share one POST path (``BaseHttpTransport``) and differ in
how replies reach the client:

* ``StreamableHttpTransport``: the reply is the response body.
* ``SimulatedSseTransport``: the reply is the response body, or, when the
  server answers with an empty body, a locally synthesized reply.
* ``PollingTransport``: the reply is the response body, or is fetched later
  by polling the endpoint.
"""
import asyncio
import copy
import json
import time
from collections.abc import Mapping, Sequence
from typing import Any

import aiohttp
import structlog

from ...config import MCPClientConfig
from ..correlator import RequestCorrelator
from ..exceptions import (
    MCPAuthError,
    MCPConnectionError,
    MCPTimeoutError,
    MCPTransportClosedError,
)
from ..jsonrpc import generate_jsonrpc_result, is_request
from .base import Transport

logger = structlog.get_logger(__name__)

SESSION_ID_HEADER = "Mcp-Session-Id"


def parse_json_messages(text: str) -> list[Any]:
    """Parses a body holding one JSON value, a JSON array of messages, or newline-delimited JSON."""
    text = text.strip()
    if not text:
        return []
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        messages = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                messages.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning("Dropping malformed JSON line from HTTP body.", error=str(e), line=line[:200])
        return messages
    return value if isinstance(value, list) else [value]


def parse_sse_events(text: str) -> list[Any]:
    """Extracts JSON payloads from the ``data:`` fields of a text/event-stream body."""
    messages = []
    data_lines: list[str] = []
    for line in text.splitlines() + [""]:
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
        elif not line.strip() and data_lines:
            payload = "\n".join(data_lines)
            data_lines = []
            try:
                messages.append(json.loads(payload))
            except json.JSONDecodeError as e:
                logger.warning("Dropping malformed SSE event.", error=str(e), payload=payload[:200])
    return messages


class BaseHttpTransport(Transport):
    """POSTs each message to the server URL and tracks the sticky MCP session id."""

    kind = "http"

    def __init__(
        self,
        name: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        client_config: MCPClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        super().__init__(name)
        self.url = url
        self.headers = dict(headers or {})
        self.client_config = client_config or MCPClientConfig()
        self._session = session
        self._owns_session = session is None
        self.session_id: str | None = None
        self.logger = self.logger.bind(url=url)

    async def start(self) -> None:
        if self._closed:
            raise MCPConnectionError(f"Transport for '{self.name}' is already closed")
        self._get_session()
        self._started = True

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            client_cfg = self.client_config
            ssl_context = None
            if self.url.startswith("https") and not client_cfg.ssl_verify:
                self.logger.warning("SSL verification is DISABLED for HTTP transport. This is insecure for production.")
                ssl_context = False
            connector = aiohttp.TCPConnector(
                limit=client_cfg.connection_pool_total_limit,
                limit_per_host=client_cfg.connection_pool_per_host_limit,
                ttl_dns_cache=client_cfg.connection_pool_dns_cache_ttl_seconds,
                ssl=ssl_context,
            )
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    def _request_headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self.headers,
        }
        if self.session_id:
            headers[SESSION_ID_HEADER] = self.session_id
        if extra:
            headers.update(extra)
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.client_config.request_timeout_seconds,
            connect=self.client_config.connect_timeout_seconds,
        )

    def _remember_session_id(self, response: aiohttp.ClientResponse) -> None:
        session_id = response.headers.get(SESSION_ID_HEADER)
        if session_id and session_id != self.session_id:
            self.logger.debug("Captured MCP session id.", session_id=session_id)
            self.session_id = session_id

    async def _http(self, method: str, *, payload: Any = None, extra_headers: Mapping[str, str] | None = None) -> tuple[int, str, str]:
        """Performs one HTTP exchange, returning (status, content type, body text).

        Raises MCPAuthError for 401/403, MCPConnectionError for any other
        non-success status or client failure, MCPTimeoutError on timeout.
        """
        if self._closed:
            raise MCPTransportClosedError(f"Transport for '{self.name}' is closed")
        session = self._get_session()
        headers = self._request_headers(extra_headers)
        if payload is None:
            headers.pop("Content-Type", None)
        try:
            async with session.request(method, self.url, json=payload, headers=headers, timeout=self._timeout()) as response:
                self._remember_session_id(response)
                body = await response.text()
                if response.status in (401, 403):
                    self.logger.warning("Server rejected credentials.", status=response.status, server_response=body[:500])
                    raise MCPAuthError(f"HTTP {response.status}: {response.reason}. Body: {body[:500]}", status=response.status)
                if response.status >= 300:
                    self.logger.error("HTTP error status received.", status=response.status, reason=response.reason, response_body=body[:500])
                    raise MCPConnectionError(f"HTTP {response.status}: {response.reason}. Body: {body[:500]}")
                return response.status, response.content_type or "", body
        except aiohttp.ClientConnectorError as e:
            self.logger.error("Client connector error.", error_os_error=str(e.os_error), error_str=str(e))
            raise MCPConnectionError(f"Connection refused by {self.url}: {e.os_error or e}") from e
        except asyncio.TimeoutError as e:
            self.logger.error("HTTP request timed out.", timeout_total=self.client_config.request_timeout_seconds)
            raise MCPTimeoutError(f"Request to {self.url} timed out after {self.client_config.request_timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            self.logger.error("AIOHTTP client error.", error_type=type(e).__name__, error_message=str(e))
            raise MCPConnectionError(f"HTTP client error for {self.url}: {e}") from e

    async def _post(self, message: dict[str, Any]) -> tuple[int, str, str]:
        self.logger.debug("Posting message.", method=message.get("method"), request_id=message.get("id"))
        return await self._http("POST", payload=message)

    def _dispatch_body(self, content_type: str, body: str) -> int:
        """Dispatches every message found in a response body; returns how many there were."""
        if "text/event-stream" in content_type:
            messages = parse_sse_events(body)
        else:
            messages = parse_json_messages(body)
        for message in messages:
            self._dispatch(message)
        return len(messages)

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class StreamableHttpTransport(BaseHttpTransport):
    """One POST per message; replies come back in the response body."""

    kind = "streamable-http"

    async def send(self, message: dict[str, Any]) -> None:
        _, content_type, body = await self._post(message)
        if not body.strip():
            if is_request(message):
                # No push channel here; only a transport that can receive deferred replies will see it.
                self.logger.info("Empty response body, reply will arrive asynchronously.", method=message.get("method"), request_id=message.get("id"))
            return
        if not self._dispatch_body(content_type, body):
            self.logger.warning("Response body held no JSON-RPC message.", body=body[:200])

    async def close(self) -> None:
        if self._closed:
            return
        if self.session_id and self._session is not None and not self._session.closed:
            try:
                await self._http("DELETE")
            except Exception as e:
                self.logger.debug("Session DELETE failed during close.", error=str(e))
        await self._close_session()
        self._signal_close("Transport closed")


def _tool(name: str, description: str, properties: dict[str, Any], required: Sequence[str]) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {"type": "object", "properties": properties, "required": list(required)},
    }


_STR = {"type": "string"}
_INT = {"type": "integer"}

# Catalog synthesized for servers (notably GitHub's hosted MCP endpoint) that
# acknowledge tools/list with an empty body. Not authoritative: pass an
# explicit catalog to SimulatedSseTransport when the real one is known.
DEFAULT_SIMULATED_TOOL_CATALOG: list[dict[str, Any]] = [
    _tool("create_or_update_file", "Create or update a single file in a GitHub repository",
          {"owner": _STR, "repo": _STR, "path": _STR, "content": _STR, "message": _STR, "branch": _STR, "sha": _STR},
          ["owner", "repo", "path", "content", "message", "branch"]),
    _tool("search_repositories", "Search for GitHub repositories",
          {"query": _STR, "page": _INT, "perPage": _INT}, ["query"]),
    _tool("create_repository", "Create a new GitHub repository in your account",
          {"name": _STR, "description": _STR, "private": {"type": "boolean"}, "autoInit": {"type": "boolean"}}, ["name"]),
    _tool("get_file_contents", "Get the contents of a file or directory from a GitHub repository",
          {"owner": _STR, "repo": _STR, "path": _STR, "branch": _STR}, ["owner", "repo", "path"]),
    _tool("create_issue", "Create a new issue in a GitHub repository",
          {"owner": _STR, "repo": _STR, "title": _STR, "body": _STR, "labels": {"type": "array", "items": _STR}},
          ["owner", "repo", "title"]),
    _tool("create_pull_request", "Create a new pull request in a GitHub repository",
          {"owner": _STR, "repo": _STR, "title": _STR, "body": _STR, "head": _STR, "base": _STR},
          ["owner", "repo", "title", "head", "base"]),
    _tool("list_issues", "List issues in a GitHub repository with filtering options",
          {"owner": _STR, "repo": _STR, "state": {"type": "string", "enum": ["open", "closed", "all"]}, "page": _INT, "perPage": _INT},
          ["owner", "repo"]),
    _tool("search_code", "Search for code across GitHub repositories",
          {"q": _STR, "page": _INT, "perPage": _INT}, ["q"]),
    _tool("list_commits", "Get list of commits of a branch in a GitHub repository",
          {"owner": _STR, "repo": _STR, "sha": _STR, "page": _INT, "perPage": _INT}, ["owner", "repo"]),
    _tool("get_pull_request", "Get details of a specific pull request",
          {"owner": _STR, "repo": _STR, "pullNumber": _INT}, ["owner", "repo", "pullNumber"]),
]


class SimulatedSseTransport(BaseHttpTransport):
    """POST-per-message transport for servers that acknowledge requests with empty bodies.

    ``send`` waits until the request's reply has been delivered (real or
    synthesized) or the request times out, so callers observe synchronous
    request/response semantics.
    """

    kind = "simulated-sse"

    def __init__(
        self,
        name: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        client_config: MCPClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        response_delay_seconds: float = 0.1,
        tool_catalog: Sequence[dict[str, Any]] | None = None,
    ):
        super().__init__(name, url, headers, client_config, session)
        self.response_delay_seconds = response_delay_seconds
        self.tool_catalog = list(tool_catalog if tool_catalog is not None else DEFAULT_SIMULATED_TOOL_CATALOG)
        self._pending = RequestCorrelator(self.client_config.request_timeout_seconds, name=f"{name}-simulated-sse")
        self._synthesis_handles: dict[Any, asyncio.TimerHandle] = {}

    def _dispatch(self, message: Any) -> None:
        if isinstance(message, dict) and message.get("id") is not None and "method" not in message:
            self._pending.resolve(message["id"], message)
        super()._dispatch(message)

    async def send(self, message: dict[str, Any]) -> None:
        if not is_request(message):
            # Notifications are fire-and-forget.
            await self._post(message)
            return

        request_id = message["id"]
        waiter = self._pending.register(request_id)
        try:
            _, content_type, body = await self._post(message)
        except Exception:
            waiter.cancel()
            raise

        if body.strip() and not self._dispatch_body(content_type, body):
            self.logger.warning("Response body held no JSON-RPC message.", body=body[:200])
        if not waiter.done():
            self._schedule_synthesized_reply(message)
        await waiter

    def _schedule_synthesized_reply(self, message: dict[str, Any]) -> None:
        loop = asyncio.get_running_loop()
        request_id = message["id"]
        self.logger.debug("Empty response, synthesizing reply.", method=message.get("method"), request_id=request_id)
        self._synthesis_handles[request_id] = loop.call_later(
            self.response_delay_seconds, self._deliver_synthesized_reply, message
        )

    def _deliver_synthesized_reply(self, message: dict[str, Any]) -> None:
        request_id = message["id"]
        self._synthesis_handles.pop(request_id, None)
        if self._closed or request_id not in self._pending:
            return
        self._dispatch(generate_jsonrpc_result(request_id, self._synthesize_result(message)))

    def _synthesize_result(self, message: dict[str, Any]) -> dict[str, Any]:
        method = message.get("method")
        if method == "initialize":
            return {
                "protocolVersion": message.get("params", {}).get("protocolVersion", "1.0"),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": "1.0.0"},
            }
        if method == "tools/list":
            return {"tools": copy.deepcopy(self.tool_catalog)}
        return {}

    async def close(self) -> None:
        if self._closed:
            return
        for handle in self._synthesis_handles.values():
            handle.cancel()
        self._synthesis_handles.clear()
        self._pending.reject_all(MCPTransportClosedError("Transport closed"))
        await self._close_session()
        self._signal_close("Transport closed")


class PollingTransport(BaseHttpTransport):
    """POST-per-message transport that fetches deferred replies by polling the endpoint."""

    kind = "polling"

    def __init__(
        self,
        name: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        client_config: MCPClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        poll_interval_seconds: float = 0.5,
        request_timeout_seconds: float = 30.0,
    ):
        super().__init__(name, url, headers, client_config, session)
        self.poll_interval_seconds = poll_interval_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self._awaiting: dict[Any, float] = {}
        self._poll_task: asyncio.Task | None = None

    @property
    def awaiting_ids(self) -> list[Any]:
        return list(self._awaiting)

    async def start(self) -> None:
        await super().start()
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop(), name=f"mcp-poll-{self.name}")

    def _dispatch(self, message: Any) -> None:
        if isinstance(message, dict) and "method" not in message:
            self._awaiting.pop(message.get("id"), None)
        super()._dispatch(message)

    async def send(self, message: dict[str, Any]) -> None:
        _, content_type, body = await self._post(message)
        if body.strip() and self._dispatch_body(content_type, body):
            return
        if is_request(message):
            self._awaiting[message["id"]] = time.monotonic()

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval_seconds)
            if not self._awaiting:
                continue
            self._expire_stale_requests()
            if not self._awaiting:
                continue
            try:
                _, content_type, body = await self._http("GET", extra_headers={"X-MCP-Poll": "true"})
            except MCPTransportClosedError:
                return
            except Exception as e:
                self.logger.warning("Poll failed.", error=str(e), error_type=type(e).__name__)
                continue
            if body.strip():
                self._dispatch_body(content_type, body)

    def _expire_stale_requests(self) -> None:
        now = time.monotonic()
        for request_id, sent_at in list(self._awaiting.items()):
            if now - sent_at >= self.request_timeout_seconds:
                del self._awaiting[request_id]
                self._report_error(MCPTimeoutError(f"Polling for request {request_id} timed out after {self.request_timeout_seconds}s"))

    async def close(self) -> None:
        if self._closed:
            return
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        self._awaiting.clear()
        await self._close_session()
        self._signal_close("Transport closed")
