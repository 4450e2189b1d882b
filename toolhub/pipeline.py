"""
Named stages of the fail-safe tool call pipeline.

``MCPClient.call_tool`` chains them over a ``Result``::

    invoke -> ensure_response -> (schedule idle disconnect) -> log_outcome
           -> error_to_call_result -> unwrap
"""

import json
from typing import Any, Callable, Dict

from mcp.types import CallToolResult, TextContent

from toolhub.exceptions import ToolCallError, ToolHubError
from toolhub.logger import StructuredLogger
from toolhub.result import Result


def error_to_string(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__


def error_details(error: BaseException) -> Dict[str, Any]:
    """Structured log fields for a failure."""
    if isinstance(error, ToolHubError):
        return error.to_dict()
    return {"type": type(error).__name__, "message": error_to_string(error)}


def ensure_response(response: Any) -> CallToolResult:
    """Reject empty and malformed responses."""
    if response is None:
        raise ToolCallError("Tool call failed with null")
    if not isinstance(response, CallToolResult):
        raise ToolCallError(
            f"Tool call returned an unexpected response: {type(response).__name__}"
        )
    return response


def log_outcome(
    log: StructuredLogger, tool_name: str
) -> Callable[[Result[CallToolResult]], None]:
    """Build a watcher logging both local failures and remote-reported errors."""

    def watcher(result: Result[CallToolResult]) -> None:
        if not result.is_ok:
            log.error(f"Tool call failed: {tool_name}", error_details(result.error))
        elif result.value.isError:
            log.error(
                f"Tool call failed: {tool_name}",
                {"content": [item.model_dump() for item in result.value.content]},
            )

    return watcher


def error_to_call_result(error: BaseException) -> CallToolResult:
    """Encode a failure as a structured tool error result."""
    return CallToolResult(
        content=[
            TextContent(
                type="text",
                text=json.dumps(
                    {
                        "error": {
                            "message": error_to_string(error),
                            "name": type(error).__name__,
                        }
                    }
                ),
            )
        ],
        isError=True,
    )
