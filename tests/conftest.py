"""
Test configuration and fixtures for the toolhub test suite.
"""

import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent, Tool

from toolhub.mcp.client import MCPClientOptions
from toolhub.schema import MCPSseConfig, MCPStdioConfig

def make_tool(
    name: str, description: str = "", input_schema: Optional[Dict[str, Any]] = None
) -> Tool:
    return Tool(
        name=name,
        description=description or f"{name} tool",
        inputSchema=input_schema if input_schema is not None else {"type": "object"},
    )


def text_result(text: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)


class FakeMCPServer:
    """
    Stand-in for a remote MCP server.

    Patches the transport factories and ``ClientSession`` used by
    ``toolhub.mcp.transport`` so every handshake and call lands here.
    """

    def __init__(self):
        self.tools: List[Tool] = [
            make_tool(
                "echo",
                "Echo the given text",
                {
                    "type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"],
                },
            ),
            make_tool("ping"),
        ]
        self.handshake_delay = 0.0
        self.handshake_error: Optional[BaseException] = None
        self.close_error: Optional[BaseException] = None
        self.handshakes = 0
        self.closes = 0

        self.session = Mock()
        self.session.initialize = AsyncMock(side_effect=self._initialize)
        self.session.list_tools = AsyncMock(side_effect=self._list_tools)
        self.session.call_tool = AsyncMock(side_effect=self._call_tool)

        self.stdio_client = MagicMock(side_effect=self._open_transport)
        self.sse_client = MagicMock(side_effect=self._open_transport)
        self.session_class = MagicMock(side_effect=self._open_session)

    async def _initialize(self):
        self.handshakes += 1
        if self.handshake_delay:
            await asyncio.sleep(self.handshake_delay)
        if self.handshake_error is not None:
            raise self.handshake_error

    async def _list_tools(self):
        return ListToolsResult(tools=list(self.tools))

    async def _call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None):
        if name == "echo":
            return text_result((arguments or {}).get("text", ""))
        return text_result(f"unknown tool: {name}", is_error=True)

    def _open_transport(self, *args, **kwargs):
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=(Mock(), Mock()))
        context.__aexit__ = AsyncMock(side_effect=self._exit_transport)
        return context

    async def _exit_transport(self, exc_type, exc_val, exc_tb):
        self.closes += 1
        if self.close_error is not None and exc_type is None:
            raise self.close_error
        return None

    def _open_session(self, *args, **kwargs):
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=self.session)
        context.__aexit__ = AsyncMock(return_value=None)
        return context


@pytest.fixture
def fake_server():
    """Patch the MCP transports with an in-memory fake server."""
    server = FakeMCPServer()
    with patch("toolhub.mcp.transport.stdio_client", server.stdio_client), patch(
        "toolhub.mcp.transport.sse_client", server.sse_client
    ), patch("toolhub.mcp.transport.ClientSession", server.session_class):
        yield server


@pytest.fixture
def stdio_config() -> MCPStdioConfig:
    return MCPStdioConfig(command="python", args=["-m", "echo_server"])


@pytest.fixture
def sse_config() -> MCPSseConfig:
    return MCPSseConfig(
        url="http://localhost:8931/sse", headers={"Authorization": "Bearer test"}
    )


@pytest.fixture
def client_options() -> MCPClientOptions:
    """Options with no idle disconnect and stdio allowed."""
    return MCPClientOptions(auto_disconnect_seconds=0, network_only=False)
