"""
StdioTransport against a real child process (tests/fixtures/echo_mcp_server.py).
"""
import asyncio

import pytest

from mcp_hub.config import MCPClientConfig
from mcp_hub.mcp_client.client import MCPClient
from mcp_hub.mcp_client.exceptions import MCPConnectionError, MCPTransportClosedError
from mcp_hub.mcp_client.negotiator import negotiate_connection
from mcp_hub.mcp_client.transports.stdio import StdioTransport
from mcp_hub.models.servers import StdioServerConfig


@pytest.fixture
def stdio_config(echo_server_command, echo_server_script):
    return StdioServerConfig(
        command=echo_server_command,
        args=[str(echo_server_script)],
        env={"ECHO_SERVER_GREETING": "hello from env"},
    )


@pytest.mark.asyncio
async def test_handshake_list_and_call(stdio_config):
    connection = await negotiate_connection("echo", stdio_config)
    try:
        assert connection.transport_kind == "stdio"
        assert connection.client.server_info == {"name": "echo-server", "version": "1.0.0"}

        tools = await connection.client.list_tools()
        assert [t.name for t in tools] == ["echo", "add", "greeting", "fail", "crash"]

        result = await connection.client.call_tool("echo", {"text": "héllo ✓"})
        assert result == {"content": [{"type": "text", "text": "héllo ✓"}]}
    finally:
        await connection.client.close()


@pytest.mark.asyncio
async def test_configured_env_reaches_the_process(stdio_config):
    connection = await negotiate_connection("echo", stdio_config)
    try:
        result = await connection.client.call_tool("greeting")
        assert result["content"][0]["text"] == "hello from env"
    finally:
        await connection.client.close()


@pytest.mark.asyncio
async def test_concurrent_requests_are_correlated(stdio_config):
    connection = await negotiate_connection("echo", stdio_config)
    try:
        results = await asyncio.gather(*(
            connection.client.call_tool("add", {"a": i, "b": i}) for i in range(10)
        ))
        assert [r["content"][0]["text"] for r in results] == [str(i * 2) for i in range(10)]
    finally:
        await connection.client.close()


@pytest.mark.asyncio
async def test_process_exit_reports_code_and_stderr(echo_server_command, echo_server_script):
    transport = StdioTransport("broken", echo_server_command, [str(echo_server_script), "--exit-immediately"])
    closed = asyncio.Event()
    reasons = []
    transport.on_close.add(lambda reason: (reasons.append(reason), closed.set()))

    await transport.start()
    await asyncio.wait_for(closed.wait(), timeout=5)

    assert transport.is_closed
    assert reasons[0].startswith("Process exited with code 2")
    assert "startup failed: missing token" in reasons[0]
    await transport.close()
    assert len(reasons) == 1


@pytest.mark.asyncio
async def test_crash_rejects_pending_request(stdio_config):
    connection = await negotiate_connection("echo", stdio_config)
    reasons = []
    connection.client.on_close.add(reasons.append)
    try:
        with pytest.raises(MCPTransportClosedError, match="Process exited with code 3"):
            await connection.client.call_tool("crash")
        assert "fatal: crash requested" in reasons[0]
    finally:
        await connection.client.close()


@pytest.mark.asyncio
async def test_close_kills_the_process(stdio_config):
    connection = await negotiate_connection("echo", stdio_config)
    transport = connection.transport
    process = transport._process

    await connection.client.close()

    assert process.returncode is not None
    assert process.stdin.is_closing()
    assert transport.is_closed
    assert transport.close_reason == "Transport closed"
    with pytest.raises(MCPConnectionError, match="Connection closed"):
        await transport.send({"jsonrpc": "2.0", "method": "ping", "id": 1})


@pytest.mark.asyncio
async def test_unstarted_transport_readers_and_close_are_noops():
    transport = StdioTransport("idle", "never-run")

    await transport._read_stdout()
    await transport._read_stderr()
    await transport.close()

    assert transport.is_closed
    assert transport.close_reason == "Transport closed"


@pytest.mark.asyncio
async def test_missing_command_fails_handshake(tmp_path):
    config = StdioServerConfig(command=str(tmp_path / "no-such-server"))
    with pytest.raises(MCPConnectionError):
        await negotiate_connection("ghost", config, MCPClientConfig(connect_timeout_seconds=5))


@pytest.mark.asyncio
async def test_working_directory_is_used(echo_server_command, tmp_path):
    script = tmp_path / "cwd_server.py"
    script.write_text(
        "import json, os, sys\n"
        "for line in sys.stdin:\n"
        "    msg = json.loads(line)\n"
        "    if msg.get('id') is None:\n"
        "        continue\n"
        "    result = {'serverInfo': {'name': os.getcwd()}} if msg['method'] == 'initialize' else {}\n"
        "    sys.stdout.write(json.dumps({'jsonrpc': '2.0', 'id': msg['id'], 'result': result}) + '\\n')\n"
        "    sys.stdout.flush()\n"
    )
    transport = StdioTransport("cwd", echo_server_command, ["cwd_server.py"], cwd=str(tmp_path))
    client = MCPClient("cwd", transport)
    try:
        await client.connect(timeout_seconds=5)
        assert client.server_info["name"] == str(tmp_path.resolve())
    finally:
        await client.close()
