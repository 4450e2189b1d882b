import asyncio
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from mcp.types import CallToolResult
from pydantic import Field

from toolhub.exceptions import ToolCallAbortedError, ValidationError
from toolhub.pipeline import error_to_call_result
from toolhub.schema import ToolInfo
from toolhub.tool.base import BaseTool

if TYPE_CHECKING:
    from toolhub.mcp.client import MCPClient


def build_tool_parameters(input_schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Declared parameter contract for a remote tool.

    ``properties`` defaults to an empty mapping and extra properties are
    never allowed.
    """
    schema = dict(input_schema or {})
    schema["properties"] = schema.get("properties") or {}
    schema["additionalProperties"] = False
    return schema


def validate_arguments(parameters: Dict[str, Any], arguments: Dict[str, Any]) -> None:
    """Check arguments against the declared properties and required keys."""
    properties = parameters.get("properties") or {}
    if parameters.get("additionalProperties") is False:
        unexpected = sorted(set(arguments) - set(properties))
        if unexpected:
            raise ValidationError(
                f"Unexpected arguments: {', '.join(unexpected)}", field=unexpected[0]
            )

    missing = [key for key in parameters.get("required") or [] if key not in arguments]
    if missing:
        raise ValidationError(
            f"Missing required arguments: {', '.join(missing)}", field=missing[0]
        )


class MCPClientTool(BaseTool):
    """Represents a tool proxy that can be called on the MCP server from the client side."""

    # Back-reference only; the client's idle timer still decides when to disconnect
    client: Any = Field(None, exclude=True, repr=False)
    original_name: str = ""

    async def execute(
        self, abort_signal: Optional[asyncio.Event] = None, **kwargs
    ) -> CallToolResult:
        """Execute the tool by making a remote call to the MCP server.

        Raises:
            ToolCallAbortedError: If ``abort_signal`` is already set. No remote
                call is issued in that case.
        """
        if abort_signal is not None and abort_signal.is_set():
            raise ToolCallAbortedError(self.original_name)

        try:
            validate_arguments(self.parameters or {}, kwargs)
        except ValidationError as e:
            return error_to_call_result(e)

        return await self.client.call_tool(self.original_name, kwargs)


def build_tools(
    client: "MCPClient", tools: Iterable[ToolInfo]
) -> Dict[str, MCPClientTool]:
    """Create one wrapper per discovered tool, keyed by the remote tool name."""
    return {
        tool.name: MCPClientTool(
            name=tool.name,
            description=tool.description,
            parameters=build_tool_parameters(tool.input_schema),
            client=client,
            original_name=tool.name,
        )
        for tool in tools
    }
