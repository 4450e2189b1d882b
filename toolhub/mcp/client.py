"""
Connection manager for a single MCP server.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mcp.types import CallToolResult, Implementation

from toolhub.config import config
from toolhub.exceptions import CloseError, MCPConnectionError
from toolhub.logger import LoggingContext, logger
from toolhub.mcp.debounce import Debounce
from toolhub.mcp.locker import Locker
from toolhub.mcp.transport import ClientHandle, create_transport, open_client
from toolhub.pipeline import (
    ensure_response,
    error_details,
    error_to_call_result,
    error_to_string,
    log_outcome,
)
from toolhub.result import Result
from toolhub.schema import (
    ConnectionState,
    MCPServerInfo,
    ServerStatus,
    ToolInfo,
    parse_server_config,
)
from toolhub.tool.mcp import MCPClientTool, build_tools


@dataclass
class MCPClientOptions:
    """Per-client options. ``None`` falls back to the ``[mcp]`` config section."""

    auto_disconnect_seconds: Optional[float] = None
    network_only: Optional[bool] = None
    client_name: Optional[str] = None
    client_version: Optional[str] = None


class MCPClient:
    """
    Client for one Model Context Protocol server connection.

    Connections are established lazily and at most once at a time; callers
    racing on ``connect()`` all observe the same outcome. ``connect()``,
    ``disconnect()`` and ``call_tool()`` never raise: connection failures are
    recorded on ``error`` and tool failures come back as a ``CallToolResult``
    with ``isError`` set.

    Example:
        ```python
        client = MCPClient("files", {"command": "npx", "args": ["server-files"]})
        await client.connect()
        result = await client.tools["read_file"].execute(path="README.md")
        await client.close()
        ```
    """

    def __init__(
        self,
        name: str,
        server_config: Any,
        options: Optional[MCPClientOptions] = None,
        disconnect_debounce: Optional[Debounce] = None,
    ):
        """
        Initialize the client without connecting.

        Args:
            name: Server name, used in logs and snapshots
            server_config: ``MCPStdioConfig``/``MCPSseConfig`` or a raw mapping
            options: Client options
            disconnect_debounce: Scheduler for the idle disconnect

        Raises:
            ConfigurationError: If ``server_config`` is malformed
        """
        settings = config.mcp_config
        options = options or MCPClientOptions()

        self._name = name
        self._config = parse_server_config(server_config)
        auto_disconnect_seconds = (
            options.auto_disconnect_seconds
            if options.auto_disconnect_seconds is not None
            else settings.auto_disconnect_seconds
        )
        # Zero or negative delays disable the idle disconnect
        self._auto_disconnect_seconds = (
            auto_disconnect_seconds
            if auto_disconnect_seconds is not None and auto_disconnect_seconds > 0
            else None
        )
        self._network_only = (
            options.network_only
            if options.network_only is not None
            else settings.network_only
        )
        self._client_info = Implementation(
            name=options.client_name or settings.client_name,
            version=options.client_version or settings.client_version,
        )

        self._handle: Optional[ClientHandle] = None
        self._error: Optional[Exception] = None
        self._state = ConnectionState.DISCONNECTED
        self._locker = Locker()
        self._disconnect_debounce = disconnect_debounce or Debounce()
        self.log = logger.bind(prefix=f"MCP Client {name}: ", server=name)

        # Information about available tools from the server
        self.tool_info: List[ToolInfo] = []
        # Tool wrappers keyed by remote tool name
        self.tools: Dict[str, MCPClientTool] = {}

    def __repr__(self) -> str:
        return f"MCPClient(name={self._name!r}, state={self._state.value!r})"

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self):
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def is_connected(self) -> bool:
        """Connected and the session is still alive."""
        return (
            self._state == ConnectionState.CONNECTED
            and self._handle is not None
            and not self._handle.closed
        )

    def get_info(self) -> MCPServerInfo:
        """Snapshot of the server; status is derived on every call."""
        if self._locker.is_locked:
            status = ServerStatus.LOADING
        elif self.is_connected:
            status = ServerStatus.CONNECTED
        else:
            status = ServerStatus.DISCONNECTED

        return MCPServerInfo(
            name=self._name,
            config=self._config,
            status=status,
            error=error_to_string(self._error) if self._error is not None else None,
            tool_info=list(self.tool_info),
        )

    def _schedule_auto_disconnect(self) -> None:
        if self._auto_disconnect_seconds:
            self._disconnect_debounce(self.disconnect, self._auto_disconnect_seconds)

    async def connect(self) -> Optional[ClientHandle]:
        """
        Connect to the MCP server. Does not raise.

        Returns:
            The live handle, or ``None`` when connecting failed (see ``error``)
        """
        if self._locker.is_locked:
            await self._locker.wait()
            return self._handle
        if self.is_connected:
            return self._handle
        if self._state == ConnectionState.CONNECTED:
            self._drop_lost_connection()

        started_at = time.monotonic()
        self._locker.lock()
        self._state = ConnectionState.CONNECTING
        handle: Optional[ClientHandle] = None
        try:
            transport = create_transport(self._config, network_only=self._network_only)
            handle = await open_client(transport, self._client_info)
            self.log.info(
                f"Connected to MCP server in {time.monotonic() - started_at:.2f}s"
            )

            tool_response = await handle.list_tools()
            tool_info = [
                ToolInfo(
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=tool.inputSchema or {},
                )
                for tool in tool_response.tools
            ]

            self._handle = handle
            self._state = ConnectionState.CONNECTED
            self._error = None
            self.tool_info = tool_info
            self.tools = build_tools(self, tool_info)
            self.log.info(
                f"Discovered {len(tool_info)} tools",
                {"tools": [tool.name for tool in tool_info]},
            )
            self._schedule_auto_disconnect()
        except asyncio.CancelledError:
            self._reset_connection()
            if handle is not None:
                handle.abort()
            raise
        except Exception as e:
            self.log.error(f"Failed to connect: {error_to_string(e)}", error_details(e))
            self._reset_connection()
            if handle is not None:
                await self._close_handle(handle)
            self._error = e
        finally:
            self._locker.unlock()

        return self._handle

    def _drop_lost_connection(self) -> None:
        handle = self._handle
        self.log.warning("MCP server connection was lost, reconnecting")
        self._disconnect_debounce.cancel()
        self._reset_connection()
        if handle is not None:
            handle.abort()

    def _reset_connection(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._handle = None
        self.tool_info = []
        self.tools = {}

    async def _close_handle(self, handle: ClientHandle) -> Optional[CloseError]:
        try:
            await handle.close()
        except Exception as e:
            self.log.error(
                f"Failed to close MCP server connection: {error_to_string(e)}",
                error_details(e),
            )
            return CloseError(
                f"Failed to close connection: {error_to_string(e)}",
                server_name=self._name,
                cause=e,
            )
        return None

    async def disconnect(self) -> None:
        """
        Disconnect from the MCP server. Does not raise.

        Waits for any in-flight ``connect()`` first so a half-established
        connection is never torn down.
        """
        self.log.info("Disconnecting from MCP server")
        while self._locker.is_locked:
            await self._locker.wait()

        self._disconnect_debounce.cancel()
        handle = self._handle
        self._reset_connection()
        if handle is not None:
            close_error = await self._close_handle(handle)
            if close_error is not None:
                self._error = close_error

    async def close(self) -> None:
        """Destroy the client: stop the idle timer and force a disconnect."""
        self._disconnect_debounce.cancel()
        await self.disconnect()

    async def _invoke(
        self, tool_name: str, arguments: Optional[Dict[str, Any]]
    ) -> CallToolResult:
        handle = await self.connect()
        if handle is None:
            reason = error_to_string(self._error) if self._error else "not connected"
            raise MCPConnectionError(
                f"MCP server {self._name} is unavailable: {reason}",
                server_name=self._name,
                cause=self._error,
            )
        return await handle.call_tool(tool_name, arguments)

    async def call_tool(
        self, tool_name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> CallToolResult:
        """
        Call a remote tool, connecting first if needed. Does not raise.

        The idle disconnect is re-armed after every call, including calls that
        failed.
        """
        with LoggingContext(operation=f"call_tool:{tool_name}"):
            self.log.debug(f"tool call {tool_name}")
            result = await Result.of_async(self._invoke, tool_name, arguments)
            return (
                result.map(ensure_response)
                .watch(lambda _: self._schedule_auto_disconnect())
                .watch(log_outcome(self.log, tool_name))
                .recover(error_to_call_result)
                .unwrap()
            )


def create_mcp_client(
    name: str, server_config: Any, options: Optional[MCPClientOptions] = None
) -> MCPClient:
    """Factory function to create a new MCP client"""
    return MCPClient(name, server_config, options)
