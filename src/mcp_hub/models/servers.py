"""
Server configuration models: one entry per tool server, keyed by server id,
discriminated on the ``transport`` field.
"""
import json
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

import structlog
from pydantic import Field, TypeAdapter, ValidationError, field_validator

from ..mcp_client.exceptions import MCPConfigurationError
from .common import BasePydanticModel, TransportType

logger = structlog.get_logger(__name__)


class _ServerConfigBase(BasePydanticModel):
    name: str = Field(default="", description="Human readable server name. Falls back to the server id.")
    description: str = Field(default="", description="Free-form description shown next to the server.")
    enabled: bool = Field(default=True, description="Disabled servers are configured but never started.")


def _check_url(value: str, schemes: tuple[str, ...]) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in schemes or not parsed.netloc:
        raise ValueError(f"expected an absolute {'/'.join(schemes)} URL, got {value!r}")
    return value


class StdioServerConfig(_ServerConfigBase):
    transport: Literal["stdio"] = "stdio"
    command: str = Field(..., min_length=1, description="Executable (or shell snippet) to launch.")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None


class HttpServerConfig(_ServerConfigBase):
    transport: Literal["http"]
    url: str
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_url(value, ("http", "https"))


class WebSocketServerConfig(_ServerConfigBase):
    transport: Literal["websocket"]
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    reconnect_attempts: int = Field(default=5, ge=0, alias="reconnectAttempts")
    reconnect_delay_ms: int = Field(default=1000, ge=0, alias="reconnectDelay")

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_url(value, ("ws", "wss"))


ServerConfig = Annotated[
    Union[StdioServerConfig, HttpServerConfig, WebSocketServerConfig],
    Field(discriminator="transport"),
]

_SERVER_MAP_ADAPTER = TypeAdapter(dict[str, ServerConfig])
_KNOWN_TRANSPORTS = {t.value for t in TransportType}


def parse_server_configuration(raw: str | Mapping[str, Any] | None) -> dict[str, ServerConfig]:
    """Parses a server configuration document into validated models.

    Accepts the JSON text or an already decoded mapping. Blank input yields
    an empty mapping. Entries without a ``transport`` (or with an unknown
    one) are treated as stdio servers.

    Raises:
        MCPConfigurationError: malformed JSON or an entry that violates the schema.
    """
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MCPConfigurationError(f"Server configuration is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise MCPConfigurationError(f"Server configuration must be a JSON object keyed by server id, got {type(data).__name__}")

    normalized: dict[str, Any] = {}
    for server_id, entry in data.items():
        if not isinstance(entry, Mapping):
            raise MCPConfigurationError(f"Configuration for server '{server_id}' must be an object")
        entry = dict(entry)
        transport = entry.get("transport")
        if transport not in _KNOWN_TRANSPORTS:
            if transport is not None:
                logger.warning("Unknown transport, treating server as stdio.", server_id=server_id, transport=transport)
            entry["transport"] = TransportType.STDIO.value
        normalized[str(server_id)] = entry

    try:
        return _SERVER_MAP_ADAPTER.validate_python(normalized)
    except ValidationError as e:
        raise MCPConfigurationError(f"Invalid server configuration: {e}") from e


def display_name(server_id: str, config: _ServerConfigBase) -> str:
    return config.name or server_id
