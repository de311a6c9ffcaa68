"""
Unit tests for Pydantic models in src/mcp_hub/models/
"""
import json

import pytest

from mcp_hub.mcp_client.exceptions import MCPConfigurationError
from mcp_hub.models.common import ServerState
from mcp_hub.models.conversation import AssistantEntry, ToolResultEntry, TurnResult, TurnState
from mcp_hub.models.mcp import MCPTool, ServerStatus, ToolRecord
from mcp_hub.models.servers import (
    HttpServerConfig,
    StdioServerConfig,
    WebSocketServerConfig,
    display_name,
    parse_server_configuration,
)

# --- Server configuration ---

@pytest.mark.parametrize("raw", [None, "", "   \n"])
def test_blank_configuration_is_empty(raw):
    assert parse_server_configuration(raw) == {}


def test_parse_all_transports():
    raw = json.dumps({
        "files": {"command": "npx -y", "args": ["@modelcontextprotocol/server-filesystem", "/tmp"], "env": {"DEBUG": "1"}},
        "remote": {"transport": "http", "url": "https://mcp.example.com/mcp", "headers": {"Authorization": "Bearer t"}},
        "live": {"transport": "websocket", "url": "wss://ws.example.com", "reconnectAttempts": 2, "reconnectDelay": 250},
    })

    configs = parse_server_configuration(raw)

    assert list(configs) == ["files", "remote", "live"]
    files, remote, live = configs["files"], configs["remote"], configs["live"]
    assert isinstance(files, StdioServerConfig)
    assert files.transport == "stdio"
    assert files.args == ["@modelcontextprotocol/server-filesystem", "/tmp"]
    assert files.enabled is True
    assert isinstance(remote, HttpServerConfig)
    assert remote.headers == {"Authorization": "Bearer t"}
    assert isinstance(live, WebSocketServerConfig)
    assert live.reconnect_attempts == 2
    assert live.reconnect_delay_ms == 250


def test_websocket_reconnect_defaults():
    configs = parse_server_configuration({"live": {"transport": "websocket", "url": "ws://localhost:9000"}})
    assert configs["live"].reconnect_attempts == 5
    assert configs["live"].reconnect_delay_ms == 1000


def test_unknown_transport_is_treated_as_stdio():
    configs = parse_server_configuration({"odd": {"transport": "carrier-pigeon", "command": "server"}})
    assert isinstance(configs["odd"], StdioServerConfig)


@pytest.mark.parametrize("raw, match", [
    ("{not json", "not valid JSON"),
    ("[1, 2]", "must be a JSON object"),
    ('{"a": 3}', "must be an object"),
    ('{"a": {"transport": "stdio"}}', "Invalid server configuration"),
    ('{"a": {"transport": "http"}}', "Invalid server configuration"),
    ('{"a": {"transport": "http", "url": "ftp://example.com"}}', "Invalid server configuration"),
    ('{"a": {"transport": "websocket", "url": "https://example.com"}}', "Invalid server configuration"),
    ('{"a": {"command": "x", "colour": "red"}}', "Invalid server configuration"),
])
def test_malformed_configuration_raises(raw, match):
    with pytest.raises(MCPConfigurationError, match=match):
        parse_server_configuration(raw)


def test_display_name_falls_back_to_id():
    assert display_name("files", StdioServerConfig(command="x")) == "files"
    assert display_name("files", StdioServerConfig(command="x", name="Filesystem")) == "Filesystem"

# --- MCP models ---

def test_mcp_tool_defaults_to_empty_object_schema():
    tool = MCPTool.model_validate({"name": "ping"})
    assert tool.input_schema == {"type": "object", "properties": {}}
    assert tool.description is None


def test_mcp_tool_keeps_unknown_fields():
    tool = MCPTool.model_validate({"name": "ping", "inputSchema": {"type": "object"}, "annotations": {"readOnlyHint": True}})
    assert tool.input_schema == {"type": "object"}
    assert tool.model_extra == {"annotations": {"readOnlyHint": True}}


def test_server_status_is_running():
    status = ServerStatus(id="a", name="a", status=ServerState.RUNNING, tools=[ToolRecord(name="t")])
    assert status.is_running
    assert status.tools[0].enabled is False
    assert not ServerStatus(id="a", name="a", status=ServerState.ERROR, error="boom").is_running

# --- Conversation models ---

def test_turn_result_text_joins_assistant_entries():
    result = TurnResult(
        state=TurnState.FINISHED,
        entries=[
            AssistantEntry(content="Hello "),
            ToolResultEntry(tool_call_id="c1", tool_name="srv_echo", result="ignored"),
            AssistantEntry(content="world"),
        ],
    )
    assert result.text == "Hello world"


def test_tool_result_entry_content_is_json():
    entry = ToolResultEntry(tool_call_id="c1", tool_name="srv_add", args={"a": 1, "b": 2}, result="3")
    assert json.loads(entry.content) == {"tool_name": "srv_add", "args": {"a": 1, "b": 2}, "result": "3"}
