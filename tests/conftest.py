"""Shared fixtures: an in-memory MCP transport, a fake connector for the registry, and the stdio fixture server."""
import asyncio
import copy
import shlex
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any

import pytest

from mcp_hub.config import Config, MCPClientConfig
from mcp_hub.manager.registry import ConnectionRegistry
from mcp_hub.mcp_client.client import MCPClient
from mcp_hub.mcp_client.exceptions import MCPTransportClosedError
from mcp_hub.mcp_client.negotiator import Connection
from mcp_hub.mcp_client.transports.base import Transport

ECHO_SERVER_SCRIPT = Path(__file__).parent / "fixtures" / "echo_mcp_server.py"

DEFAULT_TOOLS: list[dict[str, Any]] = [
    {
        "name": "echo",
        "description": "Echo text back",
        "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
    },
    {
        "name": "add",
        "description": "Add two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    {"name": "fail", "description": "Always reports an error"},
]


def text_result(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


class FakeTransport(Transport):
    """In-memory MCP server. Replies are delivered on the next loop iteration."""

    kind = "fake"

    def __init__(self, name: str = "fake", tools: list[dict[str, Any]] | None = None, hang_on_close: bool = False):
        super().__init__(name)
        self.tools = copy.deepcopy(tools if tools is not None else DEFAULT_TOOLS)
        self.tool_pages: list[list[dict[str, Any]]] | None = None
        self.silent_methods: set[str] = set()
        self.errors: dict[str, dict[str, Any]] = {}
        self.start_error: Exception | None = None
        self.hang_on_close = hang_on_close
        self.sent: list[dict[str, Any]] = []
        self.close_calls = 0

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self._started = True

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise MCPTransportClosedError("Transport closed")
        self.sent.append(message)
        if message.get("id") is None or message.get("method") in self.silent_methods:
            return
        asyncio.get_running_loop().call_soon(self._dispatch, self.reply_for(message))

    def reply_for(self, message: dict[str, Any]) -> dict[str, Any]:
        method = message["method"]
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": message["id"], "error": self.errors[method]}
        params = message.get("params") or {}
        if method == "initialize":
            result: Any = {
                "protocolVersion": params.get("protocolVersion"),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": "1.0"},
            }
        elif method == "tools/list":
            result = self._list_tools(params.get("cursor"))
        elif method == "tools/call":
            result = self.call_tool(params.get("name"), params.get("arguments") or {})
        else:
            result = {}
        return {"jsonrpc": "2.0", "id": message["id"], "result": result}

    def _list_tools(self, cursor: str | None) -> dict[str, Any]:
        if self.tool_pages is None:
            return {"tools": copy.deepcopy(self.tools)}
        index = int(cursor or 0)
        result: dict[str, Any] = {"tools": copy.deepcopy(self.tool_pages[index])}
        if index + 1 < len(self.tool_pages):
            result["nextCursor"] = str(index + 1)
        return result

    def call_tool(self, name: str | None, args: dict[str, Any]) -> dict[str, Any]:
        if name == "echo":
            return text_result(str(args.get("text", "")))
        if name == "add":
            return text_result(str(args["a"] + args["b"]))
        if name == "fail":
            return {"content": [{"type": "text", "text": "tool exploded"}], "isError": True}
        return {"content": [{"type": "text", "text": f"unknown tool {name}"}], "isError": True}

    def sent_methods(self) -> list[str | None]:
        return [m.get("method") for m in self.sent]

    def drop(self, reason: str = "Process exited with code 1") -> None:
        """Simulates the server going away on its own."""
        self._signal_close(reason)

    async def close(self) -> None:
        self.close_calls += 1
        if self.hang_on_close:
            await asyncio.Event().wait()
        self._signal_close("Transport closed")


class FakeConnector:
    """Stands in for transport negotiation in ConnectionRegistry."""

    def __init__(self):
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.tools: dict[str, list[dict[str, Any]]] = {}
        self.hang_on_close: set[str] = set()
        self.calls: list[tuple[str, Any]] = []
        self.transports: dict[str, list[FakeTransport]] = defaultdict(list)
        # "start <id>" when a connection is requested, "close <id>" when its transport closes.
        self.events: list[str] = []

    async def __call__(self, server_id: str, config: Any) -> Connection:
        self.calls.append((server_id, config))
        self.events.append(f"start {server_id}")
        gate = self.gates.get(server_id)
        if gate is not None:
            await gate.wait()
        if server_id in self.failures:
            raise self.failures[server_id]
        transport = FakeTransport(server_id, tools=self.tools.get(server_id), hang_on_close=server_id in self.hang_on_close)
        self.transports[server_id].append(transport)
        transport.on_close.add(lambda _reason: self.events.append(f"close {server_id}"))
        client = MCPClient(server_id, transport)
        await client.connect()
        return Connection(server_id=server_id, config=config, client=client)

    def latest(self, server_id: str) -> FakeTransport:
        return self.transports[server_id][-1]

    def call_count(self, server_id: str) -> int:
        return sum(1 for sid, _ in self.calls if sid == server_id)


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Waits until ``predicate()`` is truthy or fails the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_transport_cls():
    return FakeTransport


@pytest.fixture
def fake_transport():
    return FakeTransport("srv")


@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def app_config():
    return Config(mcp_client=MCPClientConfig(request_timeout_seconds=2.0, shutdown_timeout_seconds=0.5))


@pytest.fixture
async def registry(app_config, fake_connector):
    reg = ConnectionRegistry(app_config, connector=fake_connector)
    yield reg
    await reg.shutdown_all()


@pytest.fixture
def wait_until():
    return eventually


@pytest.fixture
def echo_server_script() -> Path:
    return ECHO_SERVER_SCRIPT


@pytest.fixture
def echo_server_command() -> str:
    """The python interpreter, quoted for use as an ``sh -c`` command."""
    return shlex.quote(sys.executable)
