"""Tests for configuration module."""

import json

import pytest
from pydantic import ValidationError

from mcp_hub.config import (
    DEFAULT_SYSTEM_PROMPT,
    Config,
    MCPClientConfig,
    OrchestratorConfig,
    TransportConfig,
)


def test_config_from_env(monkeypatch):
    """Test loading configuration from environment variables."""
    monkeypatch.setenv("MCP_HUB_LOGGING__LEVEL", "DEBUG")
    monkeypatch.setenv("MCP_HUB_LOGGING__FORMAT", "console")
    monkeypatch.setenv("MCP_HUB_MCP_CLIENT__REQUEST_TIMEOUT_SECONDS", "3.5")
    monkeypatch.setenv("MCP_HUB_MCP_CLIENT__SSL_VERIFY", "false")
    monkeypatch.setenv("MCP_HUB_TRANSPORTS__SIMULATED_SSE_HOSTS", '["mcp.example.com"]')
    monkeypatch.setenv("MCP_HUB_ORCHESTRATOR__MAX_TOOL_STEPS", "4")

    # With pydantic-settings, Config() directly loads from env vars
    config = Config()

    assert config.logging.level == "DEBUG"
    assert config.logging.format == "console"
    assert config.mcp_client.request_timeout_seconds == 3.5
    assert config.mcp_client.ssl_verify is False
    assert config.transports.simulated_sse_hosts == ["mcp.example.com"]
    assert config.orchestrator.max_tool_steps == 4


def test_config_defaults():
    """Test default configuration values."""
    config = Config()

    assert config.logging.level == "INFO"
    assert config.logging.format == "json"
    assert config.logging.file is None

    assert config.mcp_client.request_timeout_seconds == 10.0
    assert config.mcp_client.connect_timeout_seconds == 10.0
    assert config.mcp_client.shutdown_timeout_seconds == 5.0
    assert config.mcp_client.protocol_version == "2024-11-05"
    assert config.mcp_client.client_name == "mcp-hub"
    assert config.mcp_client.ssl_verify is True

    assert config.transports.simulated_response_delay_seconds == 0.1
    assert config.transports.poll_interval_seconds == 0.5
    assert config.transports.poll_request_timeout_seconds == 30.0
    assert "api.githubcopilot.com" in config.transports.simulated_sse_hosts

    assert config.orchestrator.max_tool_steps == 10
    assert config.orchestrator.system_prompt == DEFAULT_SYSTEM_PROMPT


def test_config_from_file(tmp_path):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({
        "logging": {"level": "WARNING"},
        "mcp_client": {"connect_timeout_seconds": 2},
        "orchestrator": {"max_tool_steps": 3, "system_prompt": "Be brief."},
    }))

    config = Config.from_file(config_file)

    assert config.logging.level == "WARNING"
    assert config.mcp_client.connect_timeout_seconds == 2
    assert config.mcp_client.request_timeout_seconds == 10.0
    assert config.orchestrator.max_tool_steps == 3
    assert config.orchestrator.system_prompt == "Be brief."


@pytest.mark.parametrize("field", ["request_timeout_seconds", "connect_timeout_seconds", "shutdown_timeout_seconds"])
def test_timeouts_must_be_positive(field):
    with pytest.raises(ValidationError):
        MCPClientConfig(**{field: 0})


def test_step_budget_must_allow_one_round():
    with pytest.raises(ValidationError):
        OrchestratorConfig(max_tool_steps=0)


def test_transport_config_rejects_non_positive_poll_interval():
    with pytest.raises(ValidationError):
        TransportConfig(poll_interval_seconds=0)
