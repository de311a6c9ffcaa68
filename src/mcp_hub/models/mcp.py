from typing import Any

from pydantic import Field

from .common import BasePydanticModel, ServerState


def _empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


class MCPTool(BasePydanticModel):
    """A tool as advertised by a server in a ``tools/list`` result."""
    name: str = Field(..., description="Name of the tool, unique within the MCP server.")
    description: str | None = Field(None, description="What the tool does, as reported by the server.")
    input_schema: dict[str, Any] = Field(default_factory=_empty_object_schema, alias="inputSchema",
                                         description="JSON Schema for the tool's input parameters.")

    model_config = {
        "extra": "allow",  # annotations, outputSchema and vendor fields are kept but unused
        "populate_by_name": True,
        "use_enum_values": True,
    }


class ToolRecord(BasePydanticModel):
    """Stored form of a discovered tool. New tools start disabled."""
    name: str
    description: str = ""
    enabled: bool = False


class ServerStatus(BasePydanticModel):
    id: str
    name: str
    description: str = ""
    status: ServerState = ServerState.UNLOADED
    tools: list[ToolRecord] = Field(default_factory=list)
    error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == ServerState.RUNNING


class BridgedTool(BasePydanticModel):
    """A tool exposed to the model layer under its server-qualified name."""
    qualified_name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=_empty_object_schema)
    server_id: str
    tool_name: str
