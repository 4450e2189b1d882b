from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from toolhub.exceptions import ConfigurationError


class ConnectionState(str, Enum):
    """Connection states for a single MCP server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ServerStatus(str, Enum):
    """Status reported in server snapshots."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    LOADING = "loading"


class MCPStdioConfig(BaseModel):
    """Server reached by spawning a local subprocess and talking over stdio."""

    model_config = ConfigDict(frozen=True)

    type: Literal["stdio"] = "stdio"
    command: str = Field(..., min_length=1, description="The command to run")
    args: List[str] = Field(default_factory=list, description="Command arguments")
    env: Optional[Dict[str, Optional[str]]] = Field(
        None, description="Environment entries overlaid on the current environment"
    )


class MCPSseConfig(BaseModel):
    """Server reached over an HTTP server-sent events stream."""

    model_config = ConfigDict(frozen=True)

    type: Literal["sse"] = "sse"
    url: str = Field(..., description="The URL of the SSE endpoint")
    headers: Optional[Dict[str, str]] = Field(
        None, description="Extra HTTP headers sent with every request"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid URL format: {v}")
        return v


ServerConfig = Annotated[
    Union[MCPStdioConfig, MCPSseConfig], Field(discriminator="type")
]

_server_config_adapter = TypeAdapter(ServerConfig)


def parse_server_config(raw: Any) -> Union[MCPStdioConfig, MCPSseConfig]:
    """Validate a server configuration into its tagged model.

    Mappings without a ``type`` key are tagged by shape here, once: a
    ``command`` means stdio and a ``url`` means sse. Everything downstream
    dispatches on the model type only.

    Raises:
        ConfigurationError: If the configuration is malformed.
    """
    if isinstance(raw, (MCPStdioConfig, MCPSseConfig)):
        return raw
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            f"Invalid server config: expected a mapping, got {type(raw).__name__}"
        )

    data = dict(raw)
    if "type" not in data:
        if "command" in data:
            data["type"] = "stdio"
        elif "url" in data:
            data["type"] = "sse"
        else:
            raise ConfigurationError(
                "Invalid server config: expected 'command' or 'url'", field="type"
            )

    try:
        return _server_config_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid server config: {e}", cause=e) from e


class ToolInfo(BaseModel):
    """Tool descriptor as reported by the remote server."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class MCPServerInfo(BaseModel):
    """Read-only snapshot of one server connection."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    config: ServerConfig
    status: ServerStatus
    error: Optional[str] = None
    tool_info: List[ToolInfo] = Field(default_factory=list, alias="toolInfo")
