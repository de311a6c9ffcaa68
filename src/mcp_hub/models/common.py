from enum import Enum

from pydantic import BaseModel


class BasePydanticModel(BaseModel):
    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "use_enum_values": True,
    }


class TransportType(str, Enum):
    """Transport kinds a server configuration can ask for."""
    STDIO = "stdio"
    HTTP = "http"
    WEBSOCKET = "websocket"


class ServerState(str, Enum):
    UNLOADED = "unloaded"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"
