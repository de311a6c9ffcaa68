"""Configuration management for MCP Hub."""

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Always provide a summary of any tool call results"


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format ('json' or 'console')")
    file: Optional[Path] = Field(default=None, description="Log file path")


class MCPClientConfig(BaseModel):
    """Configuration for MCP client sessions."""
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="Lifetime of a pending request before it is failed with a timeout.")
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Upper bound on one connection attempt including the initialize handshake.")
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0, description="Upper bound on closing a single connection during shutdown.")
    protocol_version: str = Field(default="2024-11-05", description="MCP protocol version announced during initialize.")
    client_name: str = Field(default="mcp-hub", description="Client name announced during initialize.")
    client_version: str = Field(default="0.1.0", description="Client version announced during initialize.")
    connection_pool_total_limit: int = Field(default=100, ge=1, description="Total connection pool limit for aiohttp sessions.")
    connection_pool_per_host_limit: int = Field(default=30, ge=1, description="Per-host connection pool limit for aiohttp sessions.")
    connection_pool_dns_cache_ttl_seconds: int = Field(default=300, ge=0, description="DNS cache TTL in seconds for aiohttp sessions.")
    ssl_verify: bool = Field(default=True, description="Enable/disable SSL certificate verification for HTTP and WebSocket transports.")


class TransportConfig(BaseModel):
    """Tuning knobs for the individual transports."""
    simulated_response_delay_seconds: float = Field(default=0.1, ge=0, description="Delay before a synthesized reply is delivered by the simulated-SSE transport.")
    poll_interval_seconds: float = Field(default=0.5, gt=0, description="Interval between polls while requests are outstanding.")
    poll_request_timeout_seconds: float = Field(default=30.0, gt=0, description="Age after which an unanswered polled request is dropped.")
    stdio_terminate_timeout_seconds: float = Field(default=5.0, gt=0, description="How long to wait for a killed stdio process to be reaped.")
    simulated_sse_hosts: List[str] = Field(
        default_factory=lambda: ["api.githubcopilot.com", "*.githubcopilot.com"],
        description="Host patterns that are known to need the simulated-SSE transport and skip the fallback chain.",
    )


class OrchestratorConfig(BaseModel):
    """Configuration for the tool-calling turn loop."""
    max_tool_steps: int = Field(default=10, ge=1, description="Maximum number of model rounds per user turn.")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System prompt passed to the model on every round.")


class Config(BaseSettings):
    """Main configuration for MCP Hub. Loads from environment variables prefixed with MCP_HUB_."""

    model_config = SettingsConfigDict(
        env_prefix='MCP_HUB_',
        env_nested_delimiter='__',  # e.g., MCP_HUB_MCP_CLIENT__REQUEST_TIMEOUT_SECONDS
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    mcp_client: MCPClientConfig = Field(default_factory=MCPClientConfig)
    transports: TransportConfig = Field(default_factory=TransportConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        Note: This does not layer with environment variables.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        return cls.model_validate(config_data)
